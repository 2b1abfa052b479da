"""Lifecycle metrics for scheduler runs."""

import math
import time
from typing import Any, Dict, List, Optional, Sequence

from zkl.models.schemas import QueueStatus


def percentile(values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile; 0 for an empty sequence."""
    if not values:
        return 0.0
    ordered = sorted(values)
    idx = math.ceil(len(ordered) * p / 100) - 1
    return ordered[max(0, idx)]


def format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    return f"{seconds / 60:.1f}m"


class MetricsCollector:
    """Records proof, confirmation, error and queue events during a run."""

    def __init__(self, clock=time.time):
        self.clock = clock
        self.reset()

    def reset(self) -> None:
        self.proof_submissions: List[Dict[str, Any]] = []
        self.proof_completions: List[Dict[str, Any]] = []
        self.tx_confirmations: List[Dict[str, Any]] = []
        self.errors: List[Dict[str, Any]] = []
        self.queue_snapshots: List[Dict[str, Any]] = []
        self.start_time = self.clock()

    def record_proof_submission(self, edge_id: int, job_id: str, queue_position: int) -> None:
        self.proof_submissions.append({
            "edge_id": edge_id,
            "job_id": job_id,
            "queue_position": queue_position,
            "timestamp": self.clock(),
        })

    def record_proof_complete(self, edge_id: int, duration: float) -> None:
        self.proof_completions.append({
            "edge_id": edge_id,
            "duration": duration,
            "timestamp": self.clock(),
        })

    def record_tx_confirmed(self, edge_id: int, total_duration: float, tx_hash: str) -> None:
        self.tx_confirmations.append({
            "edge_id": edge_id,
            "total_duration": total_duration,
            "tx_hash": tx_hash,
            "timestamp": self.clock(),
        })

    def record_error(self, error_type: str, error: Any, edge_id: Optional[int] = None) -> None:
        self.errors.append({
            "type": error_type,
            "message": str(error),
            "edge_id": edge_id,
            "timestamp": self.clock(),
        })

    def record_queue_snapshot(self, status: QueueStatus) -> None:
        self.queue_snapshots.append({
            "active_jobs": status.active_jobs,
            "queued_jobs": status.queued_jobs,
            "timestamp": self.clock(),
        })

    def errors_by_type(self) -> Dict[str, int]:
        groups: Dict[str, int] = {}
        for error in self.errors:
            groups[error["type"]] = groups.get(error["type"], 0) + 1
        return groups

    def get_summary(self) -> dict:
        proof_times = [p["duration"] for p in self.proof_completions]
        tx_times = [t["total_duration"] for t in self.tx_confirmations]
        depths = [s["queued_jobs"] for s in self.queue_snapshots]
        actives = [s["active_jobs"] for s in self.queue_snapshots]

        return {
            "total_duration": self.clock() - self.start_time,
            "proofs": {
                "submitted": len(self.proof_submissions),
                "completed": len(self.proof_completions),
                "avg_time": sum(proof_times) / len(proof_times) if proof_times else 0.0,
                "min_time": min(proof_times, default=0.0),
                "max_time": max(proof_times, default=0.0),
                "p50": percentile(proof_times, 50),
                "p95": percentile(proof_times, 95),
                "p99": percentile(proof_times, 99),
            },
            "transactions": {
                "confirmed": len(self.tx_confirmations),
                "avg_time": sum(tx_times) / len(tx_times) if tx_times else 0.0,
                "min_time": min(tx_times, default=0.0),
                "max_time": max(tx_times, default=0.0),
            },
            "errors": {
                "count": len(self.errors),
                "by_type": self.errors_by_type(),
            },
            "queue": {
                "snapshots": len(self.queue_snapshots),
                "max_depth": max(depths, default=0),
                "max_active": max(actives, default=0),
                "avg_depth": sum(depths) / len(depths) if depths else 0.0,
            },
        }

    def generate_report(self) -> str:
        s = self.get_summary()
        proofs, txs, queue, errors = s["proofs"], s["transactions"], s["queue"], s["errors"]

        lines = [
            "",
            "=" * 60,
            "SCHEDULER METRICS REPORT",
            "=" * 60,
            f"Total Duration: {format_duration(s['total_duration'])}",
            "",
            "Proof generation",
            f"  Submitted:  {proofs['submitted']:>6}",
            f"  Completed:  {proofs['completed']:>6}",
            f"  Avg Time:   {format_duration(proofs['avg_time']):>6}",
            f"  Min Time:   {format_duration(proofs['min_time']):>6}",
            f"  Max Time:   {format_duration(proofs['max_time']):>6}",
            f"  P50:        {format_duration(proofs['p50']):>6}",
            f"  P95:        {format_duration(proofs['p95']):>6}",
            f"  P99:        {format_duration(proofs['p99']):>6}",
            "",
            "Transactions",
            f"  Confirmed:  {txs['confirmed']:>6}",
            f"  Avg Time:   {format_duration(txs['avg_time']):>6}",
            f"  Min Time:   {format_duration(txs['min_time']):>6}",
            f"  Max Time:   {format_duration(txs['max_time']):>6}",
            "",
            "Queue",
            f"  Snapshots:  {queue['snapshots']:>6}",
            f"  Max Depth:  {queue['max_depth']:>6}",
            f"  Max Active: {queue['max_active']:>6}",
            f"  Avg Depth:  {queue['avg_depth']:>6.1f}",
            "",
            "Errors",
            f"  Total:      {errors['count']:>6}",
        ]
        for error_type, count in errors["by_type"].items():
            lines.append(f"    {error_type}: {count}")
        lines.append("=" * 60)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "summary": self.get_summary(),
            "proof_submissions": list(self.proof_submissions),
            "proof_completions": list(self.proof_completions),
            "tx_confirmations": list(self.tx_confirmations),
            "errors": list(self.errors),
            "queue_snapshots": list(self.queue_snapshots),
        }
