"""
Event chain execution engine.

Provides workflow orchestration on top of EventBus, processing events
recursively until a handler returns nothing or a terminal event is reached.
Every step is checked against a transition table so a handler cannot skip
or reorder lifecycle states.
"""

import asyncio
from typing import AsyncGenerator, Dict, Optional, Set, Tuple

from .events import ALLOWED_TRANSITIONS, BaseEvent, BreakEvent, Dependencies, EventBus
from .exceptions import InvalidTransition


class _ChainFailure:
    """Queue item carrying an exception raised inside the producer."""

    def __init__(self, error: Exception):
        self.error = error


class EventChain:
    """Executes event-driven workflows by chaining event handler results.

    Supports early return: the caller may stop iterating as soon as it sees
    the event it wants, while remaining processing continues in background.
    """

    def __init__(
        self,
        event_bus: EventBus,
        deps: Dependencies,
        allowed_transitions: Optional[Dict[type, Tuple[type, ...]]] = None,
    ) -> None:
        """
        Initialize event chain executor.

        Args:
            event_bus: The event bus to dispatch events through.
            deps: Dependencies container to pass to handlers.
            allowed_transitions: Map of event type to the event types its
                handlers may return. Types absent from the map are unchecked.
        """
        self.event_bus = event_bus
        self.deps = deps
        self.allowed_transitions = ALLOWED_TRANSITIONS if allowed_transitions is None else allowed_transitions
        self._background: Set[asyncio.Task] = set()

    async def execute(self, initial_event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        """
        Execute event chain starting from initial event.

        Yields:
            Events produced during chain execution, in order.

        Raises:
            InvalidTransition: A handler returned an event not allowed after its input.
            Exception: Anything a handler raised.
        """
        events_queue: asyncio.Queue = asyncio.Queue()

        async def producer():
            try:
                async for event in self._process_event(initial_event):
                    await events_queue.put(event)
            except Exception as e:
                await events_queue.put(_ChainFailure(e))
            finally:
                await events_queue.put(None)  # Sentinel to indicate completion

        task = asyncio.create_task(producer())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        while True:
            item = await events_queue.get()
            if item is None:  # Chain complete
                break
            if isinstance(item, _ChainFailure):
                raise item.error
            yield item

    def _check_transition(self, source: BaseEvent, result: BaseEvent) -> None:
        allowed = self.allowed_transitions.get(type(source))
        if allowed is None or isinstance(result, BreakEvent):
            return
        if not isinstance(result, allowed):
            raise InvalidTransition(
                f"{type(source).__name__} cannot transition to {type(result).__name__}"
            )

    async def _process_event(self, event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        """
        Process single event and recursively handle results.

        Args:
            event: The event to process.

        Yields:
            Events from the chain.
        """
        if isinstance(event, BreakEvent):
            return

        async for result in self.event_bus.dispatch(event, self.deps):
            if result is None:
                continue
            if not isinstance(result, BaseEvent):
                raise TypeError(f"Handler returned unsupported type: {type(result).__name__}")
            self._check_transition(event, result)
            yield result
            async for e in self._process_event(result):
                yield e
