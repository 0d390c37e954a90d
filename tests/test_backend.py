"""End-to-end tests against a real backend subprocess (tests/fake_backend.py)."""

import asyncio
import sys

import pytest

from conftest import FAKE_BACKEND
from emlsync.backend import BackendProcess
from emlsync.controller import SessionController
from emlsync.errors import (
    HandshakeTimeoutError,
    ProcessError,
    ProtocolError,
    ProtocolMismatchError,
)
from emlsync.protocol import index_request, ping_request
from emlsync.session import SessionState


def backend_process(**kwargs):
    return BackendProcess(sys.executable, [str(FAKE_BACKEND)], **kwargs)


async def ping_and_collect(backend):
    """Send a ping and return (pongs, errors) once the pong arrives."""
    pongs, errors = [], []
    got = asyncio.Event()
    backend.on_pong = lambda p: (pongs.append(p), got.set())
    if backend.on_error is None:
        backend.on_error = errors.append
    await backend.start()
    backend.send(ping_request())
    await asyncio.wait_for(got.wait(), 10)
    running = backend.is_running
    await backend.stop()
    return pongs, errors, running


async def start_and_settle(controller):
    session = await controller.start_session()
    state = await asyncio.wait_for(session.wait_settled(), 10)
    return session, state


class TestBackendProcess:
    def test_ping_pong(self):
        pongs = []

        async def go():
            backend = backend_process()
            got = asyncio.Event()
            backend.on_pong = lambda p: (pongs.append(p), got.set())
            await backend.start()
            assert backend.is_running
            backend.send(ping_request())
            await asyncio.wait_for(got.wait(), 10)
            await backend.stop()
            return backend

        backend = asyncio.run(go())
        assert not backend.is_running
        assert pongs[0].version == "1.12"
        assert pongs[0].doccount == 42
        assert pongs[0].server == "fake"

    def test_index_replies(self):
        infos = []

        async def go():
            backend = backend_process()
            done = asyncio.Event()

            def on_index(info):
                infos.append(info)
                if info.complete:
                    done.set()

            backend.on_index = on_index
            await backend.start()
            backend.send(index_request("/tmp/Maildir"))
            await asyncio.wait_for(done.wait(), 10)
            await backend.stop()

        asyncio.run(go())
        assert [i.status for i in infos] == ["running", "complete"]
        assert infos[-1].updated == 3

    def test_unknown_command_error(self):
        errors = []

        async def go():
            backend = backend_process()
            got = asyncio.Event()
            backend.on_error = lambda r: (errors.append(r), got.set())
            await backend.start()
            backend.send({"cmd": "frobnicate"})
            await asyncio.wait_for(got.wait(), 10)
            await backend.stop()

        asyncio.run(go())
        assert errors[0].code == 2

    def test_stop_is_not_an_exit(self):
        exits = []

        async def go():
            backend = backend_process()
            backend.on_exit = exits.append
            await backend.start()
            await backend.stop()
            await backend.stop()

        asyncio.run(go())
        assert exits == []

    def test_long_reply(self, monkeypatch):
        monkeypatch.setenv("FAKE_MODE", "long")
        pongs, errors, running = asyncio.run(ping_and_collect(backend_process()))
        assert len(errors[0].message) == 70_000
        assert pongs[0].doccount == 42
        assert running

    def test_oversized_reply_skipped(self, monkeypatch):
        monkeypatch.setenv("FAKE_MODE", "long")
        pongs, errors, running = asyncio.run(ping_and_collect(backend_process(limit=4096)))
        assert errors == []
        assert pongs[0].version == "1.12"
        assert running

    def test_handler_error_absorbed(self, monkeypatch):
        monkeypatch.setenv("FAKE_MODE", "noisy")
        calls = []

        def on_error(reply):
            calls.append(reply)
            raise RuntimeError("handler bug")

        backend = backend_process()
        backend.on_error = on_error
        pongs, _, running = asyncio.run(ping_and_collect(backend))
        assert [r.message for r in calls] == ["boom"]
        assert len(pongs) == 1
        assert running

    def test_send_when_not_running(self):
        with pytest.raises(ProcessError):
            backend_process().send(ping_request())

    def test_missing_binary(self, tmp_path):
        backend = BackendProcess(str(tmp_path / "no-such-server"))
        with pytest.raises(ProcessError, match="Could not start backend"):
            asyncio.run(backend.start())


class TestSessionEndToEnd:
    def test_ready(self, config, frontend):
        controller = SessionController(config, frontend)

        async def go():
            session, state = await start_and_settle(controller)
            await controller.close()
            return session, state

        session, state = asyncio.run(go())
        assert state is SessionState.READY
        assert session.doccount == 42
        assert frontend.main_views == [42]

    def test_failing_error_display(self, config, frontend, monkeypatch):
        monkeypatch.setenv("FAKE_MODE", "noisy")

        def error(text):
            raise RuntimeError("display gone")

        frontend.error = error
        controller = SessionController(config, frontend)

        async def go():
            session, state = await start_and_settle(controller)
            await controller.close()
            return state

        assert asyncio.run(go()) is SessionState.READY
        assert frontend.main_views == [42]

    def test_version_mismatch(self, config, frontend, monkeypatch):
        monkeypatch.setenv("FAKE_VERSION", "1.10")
        controller = SessionController(config, frontend)

        async def go():
            session, state = await start_and_settle(controller)
            await controller.wait_closed()
            return session, state

        session, state = asyncio.run(go())
        assert state is SessionState.FAILED
        assert isinstance(session.error, ProtocolMismatchError)
        assert session.error.received == "1.10"
        assert controller.scheduler is None
        assert frontend.main_views == []

    def test_malformed_pong(self, config, frontend, monkeypatch):
        monkeypatch.setenv("FAKE_MODE", "malformed")
        controller = SessionController(config, frontend)

        async def go():
            session, state = await start_and_settle(controller)
            await controller.wait_closed()
            return session, state

        session, state = asyncio.run(go())
        assert state is SessionState.FAILED
        assert isinstance(session.error, ProtocolError)
        assert "doccount" in str(session.error)

    def test_backend_exits_during_handshake(self, config, frontend, monkeypatch):
        monkeypatch.setenv("FAKE_MODE", "exit")
        controller = SessionController(config, frontend)

        async def go():
            session, state = await start_and_settle(controller)
            await controller.wait_closed()
            return session, state

        session, state = asyncio.run(go())
        assert state is SessionState.FAILED
        assert "status 3" in str(session.error)

    def test_handshake_timeout(self, config, frontend, monkeypatch):
        monkeypatch.setenv("FAKE_MODE", "silent")
        config.handshake_timeout = 0.2
        controller = SessionController(config, frontend)

        async def go():
            session, state = await start_and_settle(controller)
            await controller.wait_closed()
            return session, state

        session, state = asyncio.run(go())
        assert state is SessionState.FAILED
        assert isinstance(session.error, HandshakeTimeoutError)
        assert "0.2 seconds" in frontend.errors[0]

    def test_update_and_index(self, config, frontend, monkeypatch):
        monkeypatch.setenv("FAKE_UPDATED", "5")
        updates = []
        controller = SessionController(config, frontend, on_index_updated=updates.append)

        async def go():
            await start_and_settle(controller)
            proc = await controller.update()
            status = await proc.wait()
            await asyncio.wait_for(controller.index_complete.wait(), 10)
            await controller.close()
            return status

        assert asyncio.run(go()) == 0
        assert [u.updated for u in updates] == [5]
        assert "Indexing complete: 42 checked, 5 updated, 0 cleaned up" in frontend.messages
