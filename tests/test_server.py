"""Server wiring tests: uvicorn signal takeover and the cleanup hook."""

import asyncio
import os
import signal
import sys
from unittest.mock import MagicMock

import pytest
import uvicorn

from plaid_api.lifecycle.events import GraceEvent
from plaid_api.lifecycle.manager import LifecycleManager
from plaid_api.server import GracefulServer, build_cleanup, serve

from conftest import make_config


class TestGracefulServer:

    def test_capture_signals_leaves_handlers_alone(self):
        server = GracefulServer(uvicorn.Config(MagicMock()))
        before = signal.getsignal(signal.SIGTERM)

        with server.capture_signals():
            assert signal.getsignal(signal.SIGTERM) is before

        assert signal.getsignal(signal.SIGTERM) is before


class TestBuildCleanup:

    @pytest.mark.asyncio
    async def test_cleanup_stops_server_and_releases(self, exit_recorder, database_factory):
        lifecycle = LifecycleManager(
            make_config(),
            terminate=exit_recorder,
            database_factory=database_factory
        )
        handle = (await lifecycle.acquire_database()).handle
        server = MagicMock()
        server.should_exit = False

        async def fake_serve():
            while not server.should_exit:
                await asyncio.sleep(0.01)

        serve_task = asyncio.ensure_future(fake_serve())
        cleanup = build_cleanup(server, serve_task, lifecycle)

        await cleanup(GraceEvent.from_signal("SIGTERM"))

        assert server.should_exit is True
        assert serve_task.done()
        assert handle.closed

    @pytest.mark.asyncio
    async def test_cleanup_waits_for_in_flight_requests(self, exit_recorder, database_factory):
        lifecycle = LifecycleManager(
            make_config(),
            terminate=exit_recorder,
            database_factory=database_factory
        )
        lifecycle.request_started()
        server = MagicMock()
        serve_task = asyncio.ensure_future(asyncio.sleep(0))

        async def finish_request():
            await asyncio.sleep(0.15)
            lifecycle.request_finished()

        finisher = asyncio.ensure_future(finish_request())
        await build_cleanup(server, serve_task, lifecycle)(GraceEvent.from_signal("SIGTERM"))

        assert finisher.done()
        assert lifecycle.active_requests == 0


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
class TestServe:

    @pytest.mark.asyncio
    async def test_sigterm_drains_and_exits_zero(
        self, monkeypatch, exit_recorder, database_factory
    ):
        async def idle_serve(self, sockets=None):
            while not self.should_exit:
                await asyncio.sleep(0.01)

        monkeypatch.setattr(GracefulServer, "serve", idle_serve)
        config = make_config(shutdown={"deadline_ms": 2000})

        async def send_sigterm():
            await asyncio.sleep(0.1)
            os.kill(os.getpid(), signal.SIGTERM)

        killer = asyncio.ensure_future(send_sigterm())
        await asyncio.wait_for(
            serve(config, terminate=exit_recorder, database_factory=database_factory),
            timeout=5
        )
        await killer

        assert exit_recorder.statuses == [0]
        assert database_factory.built[0].closed

    @pytest.mark.asyncio
    async def test_server_stopping_on_its_own_releases_resources(
        self, monkeypatch, exit_recorder, database_factory
    ):
        async def failing_serve(self, sockets=None):
            raise OSError("address already in use")

        monkeypatch.setattr(GracefulServer, "serve", failing_serve)

        with pytest.raises(OSError):
            await serve(make_config(), terminate=exit_recorder, database_factory=database_factory)

        assert exit_recorder.statuses == []
        assert database_factory.built[0].closed
