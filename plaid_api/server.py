"""
Server Module

Runs the FastAPI app under uvicorn with the lifecycle core in charge of
termination.

Sequence:
    1. Build the LifecycleManager and warm up resources
    2. Start uvicorn (its own signal handling disabled)
    3. Register the cleanup hook and install the SignalListener
    4. Wait: either the server stops on its own, or the orchestrator
       drains and exits the process

Cleanup Order (on first trigger):
    1. Stop accepting connections (server.should_exit)
    2. Wait for in-flight requests
    3. Wait for uvicorn to finish its own shutdown
    4. Release cached resources (database pool)
"""

import asyncio
import logging
from contextlib import contextmanager

import uvicorn

from .core.config import AppConfig
from .core.database import build_database
from .lifecycle.events import GraceEvent
from .lifecycle.manager import DatabaseFactory, LifecycleManager
from .lifecycle.shutdown import CleanupHook, Terminator, hard_exit
from .lifecycle.startup import startup_handler
from .main import create_app


logger = logging.getLogger(__name__)


class GracefulServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the SignalListener."""

    @contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


def build_cleanup(
    server: uvicorn.Server,
    serve_task: "asyncio.Task[None]",
    lifecycle: LifecycleManager
) -> CleanupHook:
    """Cleanup hook handed to the ShutdownOrchestrator."""

    async def cleanup(event: GraceEvent) -> None:
        server.should_exit = True
        lifecycle.logger.info("Airlock sealed. Draining remaining connections...")

        drain_timeout = lifecycle.orchestrator.deadline_ms / 1000
        await lifecycle.drain(drain_timeout)
        await serve_task
        await lifecycle.release_resources()

    return cleanup


async def serve(
    config: AppConfig,
    terminate: Terminator = hard_exit,
    database_factory: DatabaseFactory = build_database
) -> None:
    """Run the API until the process is told to stop."""
    lifecycle = LifecycleManager(
        config,
        terminate=terminate,
        database_factory=database_factory
    )
    await startup_handler(lifecycle)

    app = create_app(lifecycle)
    server = GracefulServer(
        uvicorn.Config(
            app,
            host=config.api.host,
            port=config.api.port,
            log_config=None,
            lifespan="off"
        )
    )

    serve_task = asyncio.create_task(server.serve())
    lifecycle.register(build_cleanup(server, serve_task, lifecycle))
    lifecycle.install_signals()

    lifecycle.logger.info(
        "Server started",
        {
            "status": "PLAID",
            "host": config.api.host,
            "port": config.api.port,
        }
    )

    # asyncio.wait leaves the task's outcome to whoever owns the stop
    await asyncio.wait({serve_task})

    if lifecycle.accepting_work:
        # Server stopped without a trigger (e.g. uvicorn failed to bind)
        lifecycle.logger.warn("Server stopped without a shutdown trigger")
        lifecycle.uninstall_signals()
        await lifecycle.release_resources()
        serve_task.result()
        return

    # Only reached when the terminator returns instead of exiting
    await lifecycle.orchestrator.wait()
    lifecycle.uninstall_signals()
