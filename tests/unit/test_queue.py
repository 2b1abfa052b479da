"""Tests for the proof job queue and prover backends."""

import asyncio
import sys
import textwrap

import pytest
from zkl.models.schemas import JobStage, NoteModel, ProofOutput, ProofRequest, PublicOutputs
from zkl.prover.backends import ProgressEvent, ProverBackend, SubprocessProverBackend
from zkl.prover.queue import ProofJobQueue
from zkl.exceptions import ProverFailure, QueueLookupError


def make_request(tag: int) -> ProofRequest:
    """Structurally valid request whose old root identifies it."""
    return ProofRequest(
        input_notes=[NoteModel(amount=1, owner_pubkey=b"\x01" * 32, blinding=b"\x02" * 32)],
        output_notes=[],
        nullifier_signatures=[b"\x00" * 65],
        tx_signatures=[b"\x00" * 65],
        input_indices=[0],
        input_proofs=[[]],
        old_root=bytes([tag]) * 32,
    )


def make_output(root: bytes) -> ProofOutput:
    return ProofOutput(
        proof=b"\x01",
        public_values_raw=b"",
        public_outputs=PublicOutputs(old_root=root, new_root=root, nullifiers=[], output_commitments=[]),
        vkey_hash=b"\x00" * 32,
    )


async def until(predicate, attempts: int = 1000) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class GatedBackend(ProverBackend):
    """Holds each job until the test releases it."""

    name = "gated"

    def __init__(self, events=None, failures=None):
        self.events = events or []
        self.failures = failures or {}
        self.gates = {}
        self.started = []
        self.running = 0
        self.peak = 0

    def gate(self, tag: int) -> asyncio.Event:
        return self.gates.setdefault(tag, asyncio.Event())

    async def run(self, request, emit):
        tag = request.old_root[0]
        self.started.append(tag)
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            for event in self.events:
                emit(event)
            await self.gate(tag).wait()
        finally:
            self.running -= 1
        if tag in self.failures:
            raise self.failures[tag]
        return make_output(request.old_root)


class TestQueueOrdering:
    """Admission, positions and concurrency."""

    def test_serial_positions_and_order(self):
        async def scenario():
            backend = GatedBackend()
            queue = ProofJobQueue(backend, max_concurrent=1)
            responses = [queue.submit(make_request(i)) for i in range(3)]
            assert [r.queue_position for r in responses] == [0, 1, 2]
            assert responses[2].active_jobs == 1
            assert responses[2].queued_jobs == 2

            last = queue.status(responses[2].job_id)
            assert last.stage == JobStage.QUEUED
            assert last.description == "Queued (position 2 of 2)"

            for i in range(3):
                await until(lambda: backend.started == list(range(i + 1)))
                backend.gate(i).set()
            await queue.join()

            assert backend.started == [0, 1, 2]
            assert backend.peak == 1
            for response in responses:
                assert queue.status(response.job_id).stage == JobStage.SUCCESS

        asyncio.run(scenario())

    def test_positions_renumbered_on_dequeue(self):
        async def scenario():
            backend = GatedBackend()
            queue = ProofJobQueue(backend, max_concurrent=1)
            ids = [queue.submit(make_request(i)).job_id for i in range(3)]
            await until(lambda: backend.started == [0])

            backend.gate(0).set()
            await until(lambda: backend.started == [0, 1])
            assert queue.status(ids[1]).queue_position == 0
            assert queue.status(ids[2]).queue_position == 1
            assert queue.status(ids[2]).description == "Queued (position 1 of 1)"

            backend.gate(1).set()
            backend.gate(2).set()
            await queue.join()

        asyncio.run(scenario())

    def test_waiting_descriptions_track_queue_length(self):
        async def scenario():
            backend = GatedBackend()
            queue = ProofJobQueue(backend, max_concurrent=1)
            ids = [queue.submit(make_request(i)).job_id for i in range(4)]

            assert [queue.status(job_id).description for job_id in ids[1:]] == [
                "Queued (position 1 of 3)",
                "Queued (position 2 of 3)",
                "Queued (position 3 of 3)",
            ]

            for i in range(4):
                backend.gate(i).set()
            await queue.join()

        asyncio.run(scenario())

    def test_concurrency_bound(self):
        async def scenario():
            backend = GatedBackend()
            queue = ProofJobQueue(backend, max_concurrent=2)
            responses = [queue.submit(make_request(i)) for i in range(5)]
            assert [r.queue_position for r in responses] == [0, 0, 1, 2, 3]

            await until(lambda: len(backend.started) == 2)
            assert queue.queue_status().active_jobs == 2
            assert queue.queue_status().queued_jobs == 3

            for i in range(5):
                backend.gate(i).set()
            await queue.join()
            assert backend.peak == 2
            assert queue.queue_status().active_jobs == 0

        asyncio.run(scenario())

    def test_invalid_bound(self):
        with pytest.raises(ValueError):
            ProofJobQueue(GatedBackend(), max_concurrent=0)


class TestJobLifecycle:
    """Progress, failures and retention."""

    def test_stage_never_regresses(self):
        events = [
            ProgressEvent(JobStage.PROVING, 50, "Generating ZK proof..."),
            ProgressEvent(JobStage.COMPUTING, 30, "late event"),
            ProgressEvent(JobStage.SUCCESS, 100, "not reported by the prover"),
        ]

        async def scenario():
            backend = GatedBackend(events=events)
            queue = ProofJobQueue(backend)
            job_id = queue.submit(make_request(0)).job_id
            await until(lambda: backend.started == [0])

            status = queue.status(job_id)
            assert status.stage == JobStage.PROVING
            assert status.progress == 50
            assert status.description == "Generating ZK proof..."

            backend.gate(0).set()
            await queue.join()
            final = queue.status(job_id)
            assert final.stage == JobStage.SUCCESS
            assert final.progress == 100
            assert final.proof == b"\x01"
            assert final.completed_at is not None

        asyncio.run(scenario())

    def test_prover_failure_recorded_with_tail(self):
        failure = ProverFailure("nonzero-exit:3", "x" * 4000 + "END")

        async def scenario():
            backend = GatedBackend(failures={0: failure})
            queue = ProofJobQueue(backend, tail_chars=100)
            job_id = queue.submit(make_request(0)).job_id
            backend.gate(0).set()
            await queue.join()
            return queue.status(job_id)

        status = asyncio.run(scenario())
        assert status.stage == JobStage.ERROR
        assert status.progress == 0
        assert status.error == "nonzero-exit:3"
        assert len(status.output) == 100
        assert status.output.endswith("END")

    def test_unexpected_exception_is_process_error(self):
        async def scenario():
            backend = GatedBackend(failures={0: RuntimeError("boom")})
            queue = ProofJobQueue(backend)
            ids = [queue.submit(make_request(i)).job_id for i in range(2)]
            backend.gate(0).set()
            backend.gate(1).set()
            await queue.join()
            return queue.status(ids[0]), queue.status(ids[1])

        failed, following = asyncio.run(scenario())
        assert failed.error == "process-error:boom"
        # A crashed job frees its slot
        assert following.stage == JobStage.SUCCESS

    def test_completed_jobs_evicted_after_retention(self):
        now = [0.0]

        async def scenario():
            backend = GatedBackend()
            queue = ProofJobQueue(backend, retention_seconds=600, clock=lambda: now[0])
            job_id = queue.submit(make_request(0)).job_id
            backend.gate(0).set()
            await queue.join()
            return queue, job_id

        queue, job_id = asyncio.run(scenario())
        now[0] = 599.0
        assert queue.status(job_id).stage == JobStage.SUCCESS
        now[0] = 600.0
        with pytest.raises(QueueLookupError):
            queue.status(job_id)
        assert queue.queue_status().total_tracked == 0

    def test_unknown_job(self):
        queue = ProofJobQueue(GatedBackend())
        with pytest.raises(QueueLookupError) as exc_info:
            queue.status("proof_missing")
        assert exc_info.value.code == "job_not_found"


PROVER_OK = textwrap.dedent("""
    import json, sys
    request = json.load(sys.stdin)
    print(json.dumps({"stage": "proving", "progress": 50, "description": "Generating ZK proof..."}), file=sys.stderr)
    print("warming up", file=sys.stderr)
    json.dump({
        "proof": "0x01",
        "publicValuesRaw": "0x",
        "publicOutputs": {
            "oldRoot": request["oldRoot"],
            "newRoot": request["oldRoot"],
            "nullifiers": [],
            "outputCommitments": [],
        },
        "vkeyHash": "0x" + "00" * 32,
    }, sys.stdout)
""")

PROVER_EXIT = textwrap.dedent("""
    import sys
    sys.stdin.read()
    print("constraint 17 unsatisfied", file=sys.stderr)
    sys.exit(3)
""")

PROVER_GARBAGE = textwrap.dedent("""
    import sys
    sys.stdin.read()
    print("not json")
""")


class TestSubprocessBackend:
    """The prover host as a child process."""

    def run_script(self, script: str):
        backend = SubprocessProverBackend([sys.executable, "-c", script])
        events = []
        result = asyncio.run(backend.run(make_request(7), events.append))
        return result, events

    def test_success(self):
        result, events = self.run_script(PROVER_OK)
        assert result.public_outputs.old_root == bytes([7]) * 32
        assert result.proof == b"\x01"
        assert [e.stage for e in events] == [JobStage.PREPARING, JobStage.PROVING]

    def test_nonzero_exit(self):
        with pytest.raises(ProverFailure) as exc_info:
            self.run_script(PROVER_EXIT)
        assert exc_info.value.reason == "nonzero-exit:3"
        assert "constraint 17 unsatisfied" in exc_info.value.tail

    def test_parse_error(self):
        with pytest.raises(ProverFailure) as exc_info:
            self.run_script(PROVER_GARBAGE)
        assert exc_info.value.reason.startswith("parse-error:")

    def test_missing_binary(self):
        backend = SubprocessProverBackend(["/nonexistent/prover-host"])
        with pytest.raises(ProverFailure) as exc_info:
            asyncio.run(backend.run(make_request(0), lambda event: None))
        assert exc_info.value.reason.startswith("process-error:")

    def test_empty_command(self):
        with pytest.raises(ValueError):
            SubprocessProverBackend([])

    def test_progress_line_parsing(self):
        event = ProgressEvent.from_line('{"stage": "computing", "progress": 30}')
        assert event.stage == JobStage.COMPUTING
        assert event.progress == 30
        assert ProgressEvent.from_line("plain text") is None
        assert ProgressEvent.from_line('{"stage": "bogus"}') is None
