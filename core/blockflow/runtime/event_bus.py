"""
Event Bus - Progress reporting for a single workflow run.

Every run owns its own bus, passed into the executor, so independent runs
never share subscribers. Publishing an event:
1. Applies it to the run's WorkflowExecution via ``apply_event``
2. Calls every matching subscriber, one after another, in registration order

Two kinds of subscribers share the same ordered list:
- event handlers (``subscribe``) receive the WorkflowEvent itself; the NDJSON
  transport is one of these
- state observers (``on_update``) receive a snapshot of WorkflowExecution
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from blockflow.runtime.events import EventType, LoopExitReason, WorkflowEvent
from blockflow.runtime.execution_state import (
    ExecutionStatus,
    WorkflowExecution,
    apply_event,
    start_execution,
)

logger = logging.getLogger(__name__)

# Handlers may be plain functions or coroutines
EventHandler = Callable[[WorkflowEvent], Awaitable[None] | None]
StateObserver = Callable[[WorkflowExecution], Awaitable[None] | None]


@dataclass
class Subscription:
    """A subscription to run events."""

    id: str
    handler: Callable[[Any], Awaitable[None] | None]
    event_types: set[EventType] | None = None  # None = all types
    filter_node: str | None = None  # Only receive events from this node
    wants_state: bool = False  # Observer gets the execution snapshot


class EventBus:
    """
    Per-run progress channel.

    Example:
        bus = EventBus(trigger_id="trigger-1")

        # In-process observer
        unsubscribe = bus.on_update(lambda execution: print(execution.status))

        # Event-level handler
        async def on_error(event: WorkflowEvent):
            print(f"{event.node_id} failed: {event.error}")

        bus.subscribe(on_error, event_types=[EventType.ERROR])

        await bus.emit_complete(ExecutionStatus.COMPLETED)
    """

    def __init__(
        self,
        trigger_id: str = "",
        run_id: str | None = None,
        max_history: int = 1000,
    ):
        """
        Initialize the bus and the run state it tracks.

        Args:
            trigger_id: Trigger node of the run
            run_id: Run identifier (generated if omitted)
            max_history: Maximum events to keep in history
        """
        self.execution = start_execution(trigger_id, run_id=run_id)
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[WorkflowEvent] = []
        self._max_history = max_history
        self._subscription_counter = 0

    @property
    def run_id(self) -> str:
        return self.execution.run_id

    def _add(self, subscription: Subscription) -> str:
        self._subscriptions[subscription.id] = subscription
        logger.debug(f"Subscription {subscription.id} registered")
        return subscription.id

    def _next_id(self) -> str:
        self._subscription_counter += 1
        return f"sub_{self._subscription_counter}"

    def subscribe(
        self,
        handler: EventHandler,
        event_types: list[EventType] | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            handler: Function (sync or async) called with each matching event
            event_types: Types of events to receive (default: all)
            filter_node: Only receive events from this node

        Returns:
            Subscription ID (use to unsubscribe)
        """
        return self._add(
            Subscription(
                id=self._next_id(),
                handler=handler,
                event_types=set(event_types) if event_types else None,
                filter_node=filter_node,
            )
        )

    def on_update(self, observer: StateObserver) -> Callable[[], bool]:
        """
        Observe the execution state after every event.

        Returns:
            A callable that removes the observer
        """
        sub_id = self._add(Subscription(id=self._next_id(), handler=observer, wants_state=True))
        return lambda: self.unsubscribe(sub_id)

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Unsubscribe from events.

        Returns:
            True if subscription was found and removed
        """
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: WorkflowEvent) -> WorkflowExecution:
        """
        Apply an event to the run state and notify subscribers in order.

        Returns:
            The updated execution state
        """
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history :]

        apply_event(self.execution, event)

        snapshot: WorkflowExecution | None = None
        # Copy: handlers may unsubscribe while we iterate
        for subscription in list(self._subscriptions.values()):
            if not self._matches(subscription, event):
                continue
            if subscription.wants_state:
                if snapshot is None:
                    snapshot = self.execution.snapshot()
                argument: Any = snapshot
            else:
                argument = event
            try:
                result = subscription.handler(argument)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Handler error for {event.type}: {e}")

        return self.execution

    def _matches(self, subscription: Subscription, event: WorkflowEvent) -> bool:
        """Check if a subscription matches an event."""
        if subscription.event_types is not None and event.type not in subscription.event_types:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        return True

    def get_history(
        self,
        event_type: EventType | None = None,
        limit: int | None = None,
    ) -> list[WorkflowEvent]:
        """Get recorded events, optionally filtered by type."""
        events = [e for e in self._event_history if event_type is None or e.type == event_type]
        return events[-limit:] if limit else events

    # === CONVENIENCE PUBLISHERS ===

    async def emit_node_started(
        self,
        node_id: str,
        block_type: str | None = None,
        name: str | None = None,
    ) -> None:
        """Emit start event for a node."""
        await self.publish(
            WorkflowEvent(type=EventType.START, node_id=node_id, block_type=block_type, name=name)
        )

    async def emit_node_progress(
        self,
        node_id: str,
        outputs: dict[str, Any],
        block_type: str | None = None,
        name: str | None = None,
    ) -> None:
        """Emit progress event carrying a node's output payload."""
        await self.publish(
            WorkflowEvent(
                type=EventType.PROGRESS,
                node_id=node_id,
                block_type=block_type,
                name=name,
                outputs=outputs,
            )
        )

    async def emit_node_error(
        self,
        node_id: str,
        error: str,
        name: str | None = None,
    ) -> None:
        """Emit error event localized to a node (or ``__workflow__``)."""
        await self.publish(
            WorkflowEvent(type=EventType.ERROR, node_id=node_id, name=name, error=error)
        )

    async def emit_loop_iteration(
        self,
        iteration: int,
        max_iterations: int,
        node_ids: list[str],
    ) -> None:
        """Emit loop iteration event before a cycle iteration runs."""
        await self.publish(
            WorkflowEvent(
                type=EventType.LOOP_ITERATION,
                iteration=iteration,
                max_iterations=max_iterations,
                node_ids=list(node_ids),
            )
        )

    async def emit_loop_exit(
        self,
        node_id: str,
        reason: LoopExitReason,
        iterations: int,
        node_ids: list[str],
        name: str | None = None,
    ) -> None:
        """Emit loop exit event when a cycle step stops."""
        await self.publish(
            WorkflowEvent(
                type=EventType.LOOP_EXIT,
                node_id=node_id,
                name=name,
                reason=reason.value,
                iteration=iterations,
                node_ids=list(node_ids),
            )
        )

    async def emit_complete(self, status: ExecutionStatus) -> None:
        """Emit the terminal event."""
        await self.publish(WorkflowEvent(type=EventType.COMPLETE, status=status.value))
