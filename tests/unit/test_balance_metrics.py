"""Tests for run metrics and balance diagnostics."""

import pytest
from zkl.core.balance import BalanceVerifier
from zkl.core.metrics import MetricsCollector, format_duration, percentile
from zkl.core.topology import Edge
from zkl.models.schemas import QueueStatus


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPercentile:
    """Nearest-rank percentiles."""

    def test_empty(self):
        assert percentile([], 50) == 0.0

    @pytest.mark.parametrize("p,expected", [(50, 5), (95, 10), (99, 10), (10, 1), (0, 1)])
    def test_nearest_rank(self, p, expected):
        assert percentile(list(range(10, 0, -1)), p) == expected

    def test_format_duration(self):
        assert format_duration(0.25) == "250ms"
        assert format_duration(2.5) == "2.5s"
        assert format_duration(90) == "1.5m"


class TestMetricsCollector:
    """Event recording and summaries."""

    def test_summary(self):
        clock = FakeClock()
        metrics = MetricsCollector(clock=clock)
        metrics.record_proof_submission(0, "proof_a", 0)
        metrics.record_proof_submission(1, "proof_b", 1)
        metrics.record_proof_complete(0, 2.0)
        metrics.record_proof_complete(1, 4.0)
        metrics.record_tx_confirmed(0, 3.0, "0xabc")
        metrics.record_error("relayer_submission", "Stale root", edge_id=1)
        metrics.record_queue_snapshot(QueueStatus(active_jobs=1, queued_jobs=3, max_concurrent=1))
        metrics.record_queue_snapshot(QueueStatus(active_jobs=1, queued_jobs=1, max_concurrent=1))
        clock.now = 110.0

        summary = metrics.get_summary()
        assert summary["total_duration"] == 10.0
        assert summary["proofs"]["submitted"] == 2
        assert summary["proofs"]["avg_time"] == 3.0
        assert summary["proofs"]["p50"] == 2.0
        assert summary["proofs"]["p99"] == 4.0
        assert summary["transactions"]["confirmed"] == 1
        assert summary["errors"] == {"count": 1, "by_type": {"relayer_submission": 1}}
        assert summary["queue"] == {"snapshots": 2, "max_depth": 3, "max_active": 1, "avg_depth": 2.0}

    def test_empty_summary(self):
        summary = MetricsCollector().get_summary()
        assert summary["proofs"]["avg_time"] == 0.0
        assert summary["queue"]["max_depth"] == 0

    def test_report_lists_error_types(self):
        metrics = MetricsCollector()
        metrics.record_error("proof_generation", "nonzero-exit:1", edge_id=0)
        report = metrics.generate_report()
        assert "SCHEDULER METRICS REPORT" in report
        assert "proof_generation: 1" in report

    def test_reset(self):
        clock = FakeClock()
        metrics = MetricsCollector(clock=clock)
        metrics.record_error("x", "y")
        clock.now = 200.0
        metrics.reset()
        assert metrics.errors == []
        assert metrics.start_time == 200.0
        assert metrics.to_dict()["summary"]["errors"]["count"] == 0


class TestBalanceVerifier:
    """Post-confirmation checks are recorded, never raised."""

    def test_consistent_transfer(self, alice, bob):
        alice.add_utxo(alice.make_note(60), index=0)
        bob.add_utxo(bob.make_note(40), index=1)
        verifier = BalanceVerifier()

        result = verifier.verify_edge(Edge(id=0, from_wallet="alice", to_wallet="bob", amount=40), alice, bob)
        recipient = result["checks"][1]
        assert recipient["received_amount"] == 40
        assert recipient["received_correct_amount"]
        assert verifier.summary()["all_valid"]

    def test_violations_recorded_in_metrics(self, alice, bob):
        metrics = MetricsCollector()
        alice.add_utxo(alice.make_note(60), index=0)
        alice._balance = 75
        bob.add_utxo(bob.make_note(39), index=1)
        verifier = BalanceVerifier(metrics)

        verifier.verify_edge(Edge(id=4, from_wallet="alice", to_wallet="bob", amount=40), alice, bob)

        assert metrics.errors_by_type() == {"balance_inconsistent": 1, "wrong_amount_received": 1}
        assert {e["edge_id"] for e in metrics.errors} == {4}
        summary = verifier.summary()
        assert summary["inconsistent"] == 1
        assert summary["wrong_amounts"] == 1
        assert not summary["all_valid"]

    def test_recipient_without_utxos(self, alice, bob):
        verifier = BalanceVerifier()
        result = verifier.verify_edge(Edge(id=0, from_wallet="alice", to_wallet="bob", amount=1), alice, bob)
        assert result["checks"][1]["received_amount"] == 0
        assert len(verifier.violations) == 1

    def test_verify_final(self, alice, bob):
        alice.add_utxo(alice.make_note(10), index=0)
        bob._balance = 5
        result = BalanceVerifier().verify_final([alice, bob])
        assert not result["all_match"]
        assert [r["consistent"] for r in result["results"]] == [True, False]
