"""
Signal Listener Module

Detects termination triggers and turns each into a GraceEvent for the
ShutdownOrchestrator. Does no cleanup of its own.

Channels:
    - SIGINT, SIGTERM, SIGHUP (loop.add_signal_handler)
    - Asynchronous failures nobody handled (event loop exception handler)
    - Uncaught synchronous faults (sys.excepthook, threading.excepthook)

Triggers raised off the loop thread are marshalled onto it with
call_soon_threadsafe, so the orchestrator only ever runs on the loop.
"""

import sys
import signal
import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

from .events import GraceEvent
from .shutdown import ShutdownOrchestrator


logger = logging.getLogger(__name__)


TERMINATION_SIGNALS = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGHUP")
    if hasattr(signal, name)
)


class SignalListener:
    """
    Subscribe to termination triggers and forward them as GraceEvents.

    Attributes:
        orchestrator: Receiver of every normalized trigger
    """

    def __init__(self, orchestrator: ShutdownOrchestrator):
        self.orchestrator = orchestrator
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._signals: List[signal.Signals] = []
        self._previous_loop_handler = None
        self._previous_excepthook = None
        self._previous_threading_excepthook = None
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Register all trigger channels. Installing twice is a no-op."""
        if self._installed:
            return

        loop = loop or asyncio.get_running_loop()
        self._loop = loop

        for sig in TERMINATION_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
                self._signals.append(sig)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no add_signal_handler
                logger.warning(f"Signal handling not supported for {sig!r}")

        self._previous_loop_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._on_loop_exception)

        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._on_uncaught

        self._previous_threading_excepthook = threading.excepthook
        threading.excepthook = self._on_thread_exception

        self._installed = True
        logger.info(
            f"Shutdown triggers registered: "
            f"{[signal.Signals(s).name for s in self._signals]}"
        )

    def uninstall(self) -> None:
        """Remove signal handlers and restore the previous hooks."""
        if not self._installed:
            return

        loop = self._loop
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals = []

        loop.set_exception_handler(self._previous_loop_handler)
        sys.excepthook = self._previous_excepthook
        threading.excepthook = self._previous_threading_excepthook

        self._installed = False

    def _on_signal(self, signum: int) -> None:
        self._forward(GraceEvent.from_signal(signal.Signals(signum).name))

    def _on_loop_exception(
        self,
        loop: asyncio.AbstractEventLoop,
        context: Dict[str, Any]
    ) -> None:
        error = context.get("exception")
        if error is None:
            # Message-only reports (unclosed transports etc.) are not faults
            if self._previous_loop_handler is not None:
                self._previous_loop_handler(loop, context)
            else:
                loop.default_exception_handler(context)
            return

        self._forward(GraceEvent.from_fault(error, label="unhandled_async_failure"))

    def _on_uncaught(self, exc_type, exc_value, exc_tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            self._previous_excepthook(exc_type, exc_value, exc_tb)
            return
        self._forward(GraceEvent.from_fault(exc_value, label="uncaught_exception"))

    def _on_thread_exception(self, args: threading.ExceptHookArgs) -> None:
        if issubclass(args.exc_type, SystemExit):
            return
        thread_name = args.thread.name if args.thread is not None else "unknown"
        self._forward(
            GraceEvent.from_fault(args.exc_value, label=f"thread:{thread_name}")
        )

    def _forward(self, event: GraceEvent) -> None:
        loop = self._loop
        if loop is not None and loop.is_running() and not _on_loop_thread(loop):
            loop.call_soon_threadsafe(self.orchestrator.handle, event)
        else:
            self.orchestrator.handle(event)


def _on_loop_thread(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
