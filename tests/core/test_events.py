"""Tests for the lifecycle event bus.

Tests cover:
- Subscribe, unsubscribe and wildcard handlers
- Handler failure isolation
- Coroutine handlers scheduled on the running loop
"""

from __future__ import annotations

import asyncio

import pytest

from recipe_automation.core.events import WILDCARD, EventBus

# ==============================================================================
# Subscription Tests
# ==============================================================================


class TestEventBusSubscription:
    """Tests for handler registration."""

    def test_emit_reaches_subscriber(self):
        """Test a handler receives the event name and payload."""
        bus = EventBus()
        received = []
        bus.subscribe("executionQueued", lambda event, payload: received.append((event, payload)))

        bus.emit("executionQueued", {"execution_id": "exec_1"})

        assert received == [("executionQueued", {"execution_id": "exec_1"})]

    def test_emit_other_event_not_delivered(self):
        """Test handlers only see their own event."""
        bus = EventBus()
        received = []
        bus.subscribe("jobScheduled", lambda event, payload: received.append(event))

        bus.emit("jobCancelled", None)

        assert received == []

    def test_wildcard_receives_everything(self):
        """Test '*' handlers see every event."""
        bus = EventBus()
        received = []
        bus.subscribe(WILDCARD, lambda event, payload: received.append(event))

        bus.emit("recipeCreated", {})
        bus.emit("recipeDeleted", {})

        assert received == ["recipeCreated", "recipeDeleted"]

    def test_unsubscribe_callable(self):
        """Test the callable returned by subscribe removes the handler."""
        bus = EventBus()
        received = []
        remove = bus.subscribe("tick", lambda event, payload: received.append(payload))

        remove()
        bus.emit("tick", 1)

        assert received == []
        assert bus.handler_count("tick") == 0

    def test_unsubscribe_unknown_handler(self):
        """Test unsubscribing a handler that was never registered."""
        assert EventBus().unsubscribe("tick", lambda event, payload: None) is False

    def test_handler_count_and_clear(self):
        """Test counting and clearing handlers."""
        bus = EventBus()
        bus.subscribe("a", lambda event, payload: None)
        bus.subscribe("a", lambda event, payload: None)
        bus.subscribe("b", lambda event, payload: None)

        assert bus.handler_count("a") == 2
        assert bus.handler_count() == 3

        bus.clear()

        assert bus.handler_count() == 0


# ==============================================================================
# Delivery Tests
# ==============================================================================


class TestEventBusDelivery:
    """Tests for delivery semantics."""

    def test_failing_handler_does_not_stop_others(self):
        """Test a raising handler is isolated from the publisher and other handlers."""
        bus = EventBus()
        received = []

        def broken(event, payload):
            raise RuntimeError("handler failure")

        bus.subscribe("executionFailed", broken)
        bus.subscribe("executionFailed", lambda event, payload: received.append(payload))

        bus.emit("executionFailed", "exec_1")

        assert received == ["exec_1"]

    @pytest.mark.anyio
    async def test_async_handler_scheduled_on_loop(self):
        """Test coroutine handlers run as tasks on the running loop."""
        bus = EventBus()
        done = asyncio.Event()
        received = []

        async def handler(event, payload):
            received.append(payload)
            done.set()

        bus.subscribe("executionCompleted", handler)
        bus.emit("executionCompleted", "exec_1")

        await asyncio.wait_for(done.wait(), timeout=1.0)
        assert received == ["exec_1"]

    def test_async_handler_without_loop_is_dropped(self):
        """Test coroutine handlers are closed when no loop is running."""
        bus = EventBus()
        called = []

        async def handler(event, payload):
            called.append(payload)

        bus.subscribe("executionCompleted", handler)
        bus.emit("executionCompleted", "exec_1")

        assert called == []
