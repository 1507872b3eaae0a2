"""ShutdownOrchestrator tests: exit status, deadline, debounce, escalation."""

import asyncio
import time

import pytest

from plaid_api.core.logger import create_logger
from plaid_api.lifecycle.events import GraceEvent, GraceKind, ShutdownState
from plaid_api.lifecycle.shutdown import ShutdownOrchestrator

from conftest import parse_records


class CleanupRecorder:
    """Cleanup hook with a configurable duration and outcome."""

    def __init__(self, duration=0.0, error=None, hang=False):
        self.duration = duration
        self.error = error
        self.hang = hang
        self.calls = []

    async def __call__(self, event):
        self.calls.append(event)
        if self.hang:
            await asyncio.Event().wait()
        await asyncio.sleep(self.duration)
        if self.error is not None:
            raise self.error


@pytest.fixture
def orchestrator(exit_recorder):
    return ShutdownOrchestrator(create_logger("test"), terminate=exit_recorder)


async def cancel_cleanup(orchestrator):
    task = orchestrator._cleanup_task
    if task is not None and not task.done():
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestScenarios:

    @pytest.mark.asyncio
    async def test_signal_with_fast_cleanup_exits_zero(self, orchestrator, exit_recorder):
        cleanup = CleanupRecorder(duration=0.05)
        orchestrator.register(cleanup, deadline_ms=200)

        started = time.monotonic()
        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
        status = await orchestrator.wait()

        assert status == 0
        assert exit_recorder.statuses == [0]
        assert exit_recorder.times[0] - started < 0.2
        assert len(cleanup.calls) == 1
        assert orchestrator.state is ShutdownState.TERMINATED

    @pytest.mark.asyncio
    async def test_clean_drain_logs_exactly_one_stop_record(self, orchestrator, capsys):
        orchestrator.register(CleanupRecorder(duration=0.05), deadline_ms=200)

        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
        await orchestrator.wait()
        await asyncio.sleep(0.25)

        captured = capsys.readouterr()
        stops = [
            r for r in parse_records(captured.out)
            if r["message"] == "Server has come to a full stop"
        ]
        assert len(stops) == 1
        assert stops[0]["exit_status"] == 0
        assert parse_records(captured.err) == []

    @pytest.mark.asyncio
    async def test_hanging_cleanup_exits_one_at_deadline(
        self, orchestrator, exit_recorder, capsys
    ):
        orchestrator.register(CleanupRecorder(hang=True), deadline_ms=200)

        started = time.monotonic()
        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
        await orchestrator.wait()
        elapsed = exit_recorder.times[0] - started

        assert exit_recorder.statuses == [1]
        assert 0.15 <= elapsed < 1.0
        messages = [r["message"] for r in parse_records(capsys.readouterr().err)]
        assert "Shutdown timed out, forcing exit" in messages
        await cancel_cleanup(orchestrator)

    @pytest.mark.asyncio
    async def test_fault_with_clean_drain_still_exits_one(self, orchestrator, exit_recorder):
        cleanup = CleanupRecorder(duration=0.01)
        orchestrator.register(cleanup, deadline_ms=200)

        orchestrator.handle(GraceEvent.from_fault(RuntimeError("boom")))
        await orchestrator.wait()

        assert exit_recorder.statuses == [1]
        assert len(cleanup.calls) == 1
        assert cleanup.calls[0].is_fault

    @pytest.mark.asyncio
    async def test_fault_trigger_logs_fatal_with_error(self, orchestrator, capsys):
        orchestrator.register(CleanupRecorder(), deadline_ms=200)

        orchestrator.handle(GraceEvent.from_fault(RuntimeError("boom"), label="uncaught_exception"))
        await orchestrator.wait()

        record = parse_records(capsys.readouterr().err)[0]
        assert record["level"] == "fatal"
        assert record["message"] == "Unhandled crash detected, shutting down"
        assert record["trigger"] == "uncaught_exception"
        assert record["err"]["message"] == "boom"

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_default_deadline_forces_exit_after_five_seconds(
        self, orchestrator, exit_recorder
    ):
        orchestrator.register(CleanupRecorder(hang=True))

        started = time.monotonic()
        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
        await orchestrator.wait()

        assert exit_recorder.statuses == [1]
        assert 4.9 <= exit_recorder.times[0] - started < 6.0
        await cancel_cleanup(orchestrator)


class TestCleanupOutcome:

    @pytest.mark.asyncio
    async def test_cleanup_error_exits_one_with_fatal_log(
        self, orchestrator, exit_recorder, capsys
    ):
        orchestrator.register(CleanupRecorder(error=OSError("pool close failed")), deadline_ms=200)

        orchestrator.handle(GraceEvent.from_signal("SIGINT"))
        await orchestrator.wait()

        assert exit_recorder.statuses == [1]
        records = parse_records(capsys.readouterr().err)
        fatal = [r for r in records if r["message"] == "Error during cleanup"]
        assert fatal[0]["level"] == "fatal"
        assert fatal[0]["err"]["message"] == "pool close failed"

    @pytest.mark.asyncio
    async def test_cancelled_cleanup_exits_one_before_deadline(
        self, orchestrator, exit_recorder, capsys
    ):
        async def cleanup(event):
            serve_task = asyncio.ensure_future(asyncio.sleep(10))
            serve_task.cancel()
            await serve_task

        orchestrator.register(cleanup, deadline_ms=1000)

        started = time.monotonic()
        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
        await orchestrator.wait()

        assert exit_recorder.statuses == [1]
        assert exit_recorder.times[0] - started < 0.5
        messages = [r["message"] for r in parse_records(capsys.readouterr().err)]
        assert messages == ["Cleanup was cancelled"]

    @pytest.mark.asyncio
    async def test_late_cleanup_result_is_ignored(self, orchestrator, exit_recorder):
        cleanup = CleanupRecorder(duration=0.2)
        orchestrator.register(cleanup, deadline_ms=100)

        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
        await orchestrator.wait()
        await orchestrator._cleanup_task

        assert exit_recorder.statuses == [1]

    @pytest.mark.asyncio
    async def test_success_cancels_deadline(self, orchestrator, exit_recorder):
        orchestrator.register(CleanupRecorder(), deadline_ms=100)

        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
        await orchestrator.wait()
        await asyncio.sleep(0.15)

        assert exit_recorder.statuses == [0]


class TestRepeatedTriggers:

    @pytest.mark.asyncio
    async def test_burst_of_triggers_runs_cleanup_once(self, orchestrator, exit_recorder):
        cleanup = CleanupRecorder(duration=0.05)
        orchestrator.register(cleanup, deadline_ms=500)

        for name in ("SIGTERM", "SIGINT", "SIGTERM", "SIGHUP") * 5:
            orchestrator.handle(GraceEvent.from_signal(name))
        await orchestrator.wait()

        assert len(cleanup.calls) == 1
        assert exit_recorder.statuses == [0]

    @pytest.mark.asyncio
    async def test_mixed_signal_and_fault_burst_runs_cleanup_once(
        self, orchestrator, exit_recorder
    ):
        cleanup = CleanupRecorder(duration=0.05)
        orchestrator.register(cleanup, deadline_ms=500)

        events = []
        for i in range(10):
            events.append(GraceEvent.from_signal("SIGTERM"))
            events.append(GraceEvent.from_fault(RuntimeError(f"crash {i}")))
        for event in events:
            orchestrator.handle(event)
        await orchestrator.wait()

        assert len(cleanup.calls) == 1
        assert cleanup.calls[0] is events[0]
        assert exit_recorder.statuses == [0]

    @pytest.mark.asyncio
    async def test_fault_leading_mixed_burst_exits_one(self, orchestrator, exit_recorder):
        cleanup = CleanupRecorder(duration=0.05)
        orchestrator.register(cleanup, deadline_ms=500)

        orchestrator.handle(GraceEvent.from_fault(RuntimeError("first")))
        for name in ("SIGTERM", "SIGINT", "SIGHUP"):
            orchestrator.handle(GraceEvent.from_signal(name))
        await orchestrator.wait()

        assert len(cleanup.calls) == 1
        assert cleanup.calls[0].is_fault
        assert exit_recorder.statuses == [1]

    @pytest.mark.asyncio
    async def test_second_trigger_within_window_is_debounced(
        self, orchestrator, exit_recorder
    ):
        cleanup = CleanupRecorder(duration=0.05)
        orchestrator.register(cleanup, deadline_ms=500)

        first = GraceEvent.from_signal("SIGTERM")
        orchestrator.handle(first)
        orchestrator.handle(
            GraceEvent(GraceKind.SIGNAL, "SIGTERM", timestamp=first.timestamp + 0.1)
        )
        await orchestrator.wait()

        assert len(cleanup.calls) == 1
        assert exit_recorder.statuses == [0]
        assert orchestrator.trigger is first

    @pytest.mark.asyncio
    async def test_trigger_after_window_escalates(self, orchestrator, exit_recorder, capsys):
        orchestrator.register(CleanupRecorder(hang=True), deadline_ms=1000)

        first = GraceEvent.from_signal("SIGTERM")
        orchestrator.handle(first)
        orchestrator.handle(
            GraceEvent(GraceKind.SIGNAL, "SIGINT", timestamp=first.timestamp + 0.6)
        )

        assert exit_recorder.statuses == [1]
        assert orchestrator.state is ShutdownState.TERMINATED
        messages = [r["message"] for r in parse_records(capsys.readouterr().err)]
        assert "Repeated shutdown trigger while draining, forcing exit" in messages
        await cancel_cleanup(orchestrator)

    @pytest.mark.asyncio
    async def test_fault_while_draining_after_window_escalates(
        self, orchestrator, exit_recorder
    ):
        orchestrator.register(CleanupRecorder(hang=True), deadline_ms=1000)

        first = GraceEvent.from_signal("SIGTERM")
        orchestrator.handle(first)
        orchestrator.handle(GraceEvent(
            GraceKind.FAULT,
            "unhandled_async_failure",
            RuntimeError("during drain"),
            timestamp=first.timestamp + 0.7
        ))

        assert exit_recorder.statuses == [1]
        await cancel_cleanup(orchestrator)

    @pytest.mark.asyncio
    async def test_triggers_after_termination_are_ignored(self, orchestrator, exit_recorder):
        orchestrator.register(CleanupRecorder(), deadline_ms=200)

        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
        await orchestrator.wait()
        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))

        assert exit_recorder.statuses == [0]


class TestRegistration:

    @pytest.mark.asyncio
    async def test_register_twice_raises(self, orchestrator):
        orchestrator.register(CleanupRecorder())

        with pytest.raises(RuntimeError, match="already registered"):
            orchestrator.register(CleanupRecorder())

    @pytest.mark.asyncio
    async def test_non_positive_deadline_rejected(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.register(CleanupRecorder(), deadline_ms=0)
        assert not orchestrator.is_registered

    def test_register_outside_loop_needs_explicit_loop(self, orchestrator):
        with pytest.raises(RuntimeError):
            orchestrator.register(CleanupRecorder())

    def test_signal_before_register_exits_immediately(self, orchestrator, exit_recorder):
        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))

        assert exit_recorder.statuses == [0]
        assert orchestrator.state is ShutdownState.TERMINATED

    def test_fault_before_register_exits_one(self, orchestrator, exit_recorder):
        orchestrator.handle(GraceEvent.from_fault(ValueError("early")))

        assert exit_recorder.statuses == [1]

    def test_loop_not_running_exits_one(self, orchestrator, exit_recorder, capsys):
        loop = asyncio.new_event_loop()
        try:
            cleanup = CleanupRecorder()
            orchestrator.register(cleanup, loop=loop)

            orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
        finally:
            loop.close()

        assert exit_recorder.statuses == [1]
        assert cleanup.calls == []
        messages = [r["message"] for r in parse_records(capsys.readouterr().err)]
        assert "Event loop is not running, cleanup skipped" in messages


class TestStateTransitions:

    @pytest.mark.asyncio
    async def test_running_draining_terminated(self, orchestrator):
        gate = asyncio.Event()

        async def cleanup(event):
            await gate.wait()

        orchestrator.register(cleanup, deadline_ms=500)
        assert orchestrator.state is ShutdownState.RUNNING
        assert orchestrator.accepting_work

        orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
        assert orchestrator.state is ShutdownState.DRAINING
        assert not orchestrator.accepting_work

        gate.set()
        await orchestrator.wait()
        assert orchestrator.state is ShutdownState.TERMINATED
        assert orchestrator.exit_status == 0
