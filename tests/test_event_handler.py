"""
Tests for the RealtimeEventHandler pub/sub base class.
"""

import asyncio
import logging

import pytest

from src.realtime_client.event_handler import RealtimeEventHandler


@pytest.fixture
def handler():
    return RealtimeEventHandler()


class TestRegistration:
    def test_on_rejects_non_callable(self, handler):
        with pytest.raises(TypeError):
            handler.on("evt", "not callable")

    def test_handlers_run_in_registration_order(self, handler):
        calls = []
        handler.on("evt", lambda e: calls.append(("first", e)))
        handler.on("evt", lambda e: calls.append(("second", e)))

        handler.dispatch("evt", 1)

        assert calls == [("first", 1), ("second", 1)]

    def test_once_fires_a_single_time(self, handler):
        calls = []
        handler.once("evt", calls.append)

        handler.dispatch("evt", "a")
        handler.dispatch("evt", "b")

        assert calls == ["a"]
        assert "evt" not in handler.event_handlers

    @pytest.mark.asyncio
    async def test_once_supports_coroutine_handlers(self, handler):
        received = []

        async def on_event(event):
            received.append(event)

        handler.once("evt", on_event)
        handler.dispatch("evt", "a")
        handler.dispatch("evt", "b")
        await handler.wait_for_handlers()

        assert received == ["a"]
        assert "evt" not in handler.event_handlers

    def test_off_unknown_handler_raises(self, handler):
        handler.on("evt", lambda e: None)
        with pytest.raises(ValueError):
            handler.off("evt", lambda e: None)

    def test_off_without_handler_removes_all(self, handler):
        handler.on("evt", lambda e: None)
        handler.on("evt", lambda e: None)
        handler.off("evt")
        assert "evt" not in handler.event_handlers

    def test_clear_event_handlers(self, handler):
        handler.on("a", lambda e: None)
        handler.on("b", lambda e: None)
        handler.clear_event_handlers()
        assert not handler.event_handlers


class TestDispatch:
    def test_failing_handler_does_not_stop_others(self, handler):
        calls = []

        def broken(event):
            raise RuntimeError("boom")

        handler.on("evt", broken)
        handler.on("evt", calls.append)

        handler.dispatch("evt", "payload")

        assert calls == ["payload"]

    def test_dispatch_without_handlers_is_noop(self, handler):
        handler.dispatch("nobody.listens", {})

    @pytest.mark.asyncio
    async def test_coroutine_handlers_are_scheduled(self, handler):
        received = []

        async def on_event(event):
            received.append(event)

        handler.on("evt", on_event)
        handler.dispatch("evt", 42)
        assert received == []

        await asyncio.sleep(0)
        assert received == [42]

    @pytest.mark.asyncio
    async def test_failing_coroutine_handler_is_logged(self, handler, caplog):
        async def broken(event):
            raise RuntimeError("boom")

        handler.on("evt", broken)
        with caplog.at_level(logging.ERROR, logger="src.realtime_client.event_handler"):
            handler.dispatch("evt", {})
            await handler.wait_for_handlers()

        assert "Error in async event handler: boom" in caplog.text
        assert not handler._handler_tasks


class TestWaitForNext:
    @pytest.mark.asyncio
    async def test_resolves_with_next_event(self, handler):
        waiter = asyncio.create_task(handler.wait_for_next("evt", timeout=1))
        await asyncio.sleep(0)

        handler.dispatch("evt", {"value": 1})

        assert await waiter == {"value": 1}
        assert "evt" not in handler.event_handlers

    @pytest.mark.asyncio
    async def test_timeout_raises_and_unregisters(self, handler):
        with pytest.raises(TimeoutError):
            await handler.wait_for_next("evt", timeout=0.01)
        assert "evt" not in handler.event_handlers
