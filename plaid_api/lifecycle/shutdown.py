"""
Graceful Shutdown Orchestrator

This module owns the process shutdown state machine. It consumes GraceEvents
from the SignalListener, runs the cleanup hook registered by the hosting
layer exactly once, and decides the exit status.

State Machine:
    running     - no trigger received yet
    draining    - first trigger recorded, deadline timer armed, cleanup running
    terminated  - cleanup settled, deadline elapsed, or trigger escalated

Policy:
    - Trigger while draining, within 500ms of the first: duplicate, ignored
    - Trigger while draining, after 500ms: escalation, exit 1 immediately
    - Cleanup raises or is cancelled: fatal log, exit 1
    - Cleanup succeeds: exit 0 for a signal trigger, 1 for a fault trigger
    - Deadline elapses first: fatal log, exit 1; cleanup outcome ignored

Every exit path claims the exit under one lock, so whichever of cleanup,
deadline or escalation gets there first decides the status and the others
become no-ops.

Usage:
    orchestrator = ShutdownOrchestrator(logger)
    orchestrator.register(cleanup, deadline_ms=5000)
    orchestrator.handle(GraceEvent.from_signal("SIGTERM"))
"""

import os
import sys
import asyncio
import threading
from typing import Any, Awaitable, Callable, Optional

from ..core.logger import Logger
from .events import EXIT_FAILURE, GraceEvent, ShutdownState


# Triggers this close to the first one are the same logical trigger
DEBOUNCE_WINDOW_SEC = 0.5
DEFAULT_DEADLINE_MS = 5000

CleanupHook = Callable[[GraceEvent], Awaitable[Any]]
Terminator = Callable[[int], Any]


def hard_exit(status: int) -> None:
    """Flush the standard streams and end the process without unwinding."""
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError):
            pass
    os._exit(status)


class ShutdownOrchestrator:
    """
    Process-wide shutdown state machine.

    Attributes:
        deadline_ms: Time the cleanup hook gets before forced exit
    """

    def __init__(self, logger: Logger, terminate: Terminator = hard_exit):
        self._logger = logger
        self._terminate = terminate
        self._guard = threading.Lock()
        self._terminated = asyncio.Event()

        self._state = ShutdownState.RUNNING
        self._cleanup: Optional[CleanupHook] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._trigger: Optional[GraceEvent] = None
        self._exit_status: Optional[int] = None
        self._deadline_handle: Optional[asyncio.TimerHandle] = None
        self._cleanup_task: Optional[asyncio.Task] = None

        self.deadline_ms = DEFAULT_DEADLINE_MS

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def trigger(self) -> Optional[GraceEvent]:
        """The event that started draining."""
        return self._trigger

    @property
    def exit_status(self) -> Optional[int]:
        return self._exit_status

    @property
    def accepting_work(self) -> bool:
        return self._state is ShutdownState.RUNNING

    @property
    def is_registered(self) -> bool:
        return self._cleanup is not None

    def register(
        self,
        cleanup: CleanupHook,
        deadline_ms: int = DEFAULT_DEADLINE_MS,
        loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> None:
        """
        Register the cleanup hook. Call once, from the event loop, at startup.

        Raises:
            RuntimeError: If a cleanup hook is already registered
            ValueError: If deadline_ms is not positive
        """
        if self._cleanup is not None:
            raise RuntimeError("A shutdown cleanup hook is already registered")
        if deadline_ms <= 0:
            raise ValueError(f"deadline_ms must be positive, got {deadline_ms}")

        self._loop = loop or asyncio.get_running_loop()
        self._cleanup = cleanup
        self.deadline_ms = deadline_ms

    def handle(self, event: GraceEvent) -> None:
        """
        React to a termination trigger.

        Must run on the event loop thread (the SignalListener marshals
        triggers raised elsewhere).
        """
        with self._guard:
            previous = self._state
            if previous is ShutdownState.RUNNING:
                self._state = ShutdownState.DRAINING
                self._trigger = event
            duplicate = (
                previous is ShutdownState.DRAINING
                and event.timestamp - self._trigger.timestamp <= DEBOUNCE_WINDOW_SEC
            )

        if previous is ShutdownState.RUNNING:
            self._begin_drain(event)
        elif previous is ShutdownState.DRAINING:
            if duplicate:
                self._logger.debug(
                    "Duplicate shutdown trigger ignored",
                    {"trigger": event.label}
                )
            else:
                self._escalate(event)

    async def wait(self) -> int:
        """Wait until the orchestrator has issued the exit, return its status."""
        await self._terminated.wait()
        return self._exit_status

    def _begin_drain(self, event: GraceEvent) -> None:
        if event.is_fault:
            self._logger.fatal(
                "Unhandled crash detected, shutting down",
                {"trigger": event.label, "err": event.error}
            )
        else:
            self._logger.warn(f"{event.label or 'Shutdown'} detected, draining")

        if self._cleanup is None:
            self._logger.warn("No cleanup hook registered, exiting immediately")
            self._exit(event.exit_status)
            return

        loop = self._loop
        if loop is None or loop.is_closed() or not loop.is_running():
            self._logger.fatal("Event loop is not running, cleanup skipped")
            self._exit(EXIT_FAILURE)
            return

        self._deadline_handle = loop.call_later(
            self.deadline_ms / 1000,
            self._on_deadline
        )
        self._cleanup_task = loop.create_task(self._run_cleanup(event))

    async def _run_cleanup(self, event: GraceEvent) -> None:
        try:
            await self._cleanup(event)
        except asyncio.CancelledError:
            if self._claim_exit(EXIT_FAILURE):
                self._logger.fatal("Cleanup was cancelled", {"trigger": event.label})
                self._finish(EXIT_FAILURE)
            raise
        except Exception as exc:
            if self._claim_exit(EXIT_FAILURE):
                self._logger.fatal("Error during cleanup", {"err": exc})
                self._finish(EXIT_FAILURE)
            return

        status = event.exit_status
        if self._claim_exit(status):
            self._logger.info(
                "Server has come to a full stop",
                {"exit_status": status}
            )
            self._finish(status)

    def _on_deadline(self) -> None:
        if self._claim_exit(EXIT_FAILURE):
            self._logger.fatal(
                "Shutdown timed out, forcing exit",
                {"deadline_ms": self.deadline_ms}
            )
            self._finish(EXIT_FAILURE)

    def _escalate(self, event: GraceEvent) -> None:
        if self._claim_exit(EXIT_FAILURE):
            self._logger.fatal(
                "Repeated shutdown trigger while draining, forcing exit",
                {"trigger": event.label, "err": event.error}
            )
            self._finish(EXIT_FAILURE)

    def _exit(self, status: int) -> None:
        if self._claim_exit(status):
            self._finish(status)

    def _claim_exit(self, status: int) -> bool:
        """Atomically take the single exit slot."""
        with self._guard:
            if self._exit_status is not None:
                return False
            self._state = ShutdownState.TERMINATED
            self._exit_status = status
            return True

    def _finish(self, status: int) -> None:
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
        self._terminated.set()
        self._terminate(status)
