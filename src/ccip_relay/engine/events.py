"""
Event-driven system with typed events and clear data flow.

Events carry their own data, handlers return next events, and dependencies
are injected separately from business data.

Gateway request lifecycle (one event per state):

    Received -> Validated -> Resolved -> Signed -> Persisted -> Responded
        \\___________\\___________\\__________\\-> Failed

Relay lifecycle:

    RelayRequested -> RelaySucceeded | RelayFailed
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Awaitable, Callable, ClassVar, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from ..adapters.evm.schemas import MetaTxAuthorization, RelayResult, ResolveCall, SignedAnswer

# ==================== Base Event ====================

class BaseEvent(ABC):
    """Base class for all events in the system."""

    state: ClassVar[str] = ""

    @abstractmethod
    def __repr__(self) -> str:
        """String representation of the event."""
        pass


# ==================== Gateway Events ====================

class GatewayRequestEvent(BaseModel, BaseEvent):
    """External trigger: raw CCIP-Read request as received."""
    state: ClassVar[str] = "Received"
    sender: str
    data: str

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"GatewayRequestEvent(sender={self.sender}, data_len={len(self.data)})"


class RequestValidatedEvent(BaseModel, BaseEvent):
    """Envelope parsed and the resolve call decoded."""
    state: ClassVar[str] = "Validated"
    sender: str
    request_data: bytes
    call: ResolveCall

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"RequestValidatedEvent(name={self.call.name}, chain_id={self.call.chain_id})"


class AnswerResolvedEvent(BaseModel, BaseEvent):
    """Chain-2 answer fetched."""
    state: ClassVar[str] = "Resolved"
    sender: str
    request_data: bytes
    call: ResolveCall
    result: bytes
    address: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"AnswerResolvedEvent(name={self.call.name}, address={self.address})"


class AnswerSignedEvent(BaseModel, BaseEvent):
    """Answer signed; ready to be recorded and returned."""
    state: ClassVar[str] = "Signed"
    call: ResolveCall
    answer: SignedAnswer
    address: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"AnswerSignedEvent(name={self.call.name}, expires_at={self.answer.expires_at})"


class RecordPersistedEvent(BaseModel, BaseEvent):
    """Record store updated (``persisted`` is False when nothing was written)."""
    state: ClassVar[str] = "Persisted"
    call: ResolveCall
    answer: SignedAnswer
    persisted: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"RecordPersistedEvent(name={self.call.name}, persisted={self.persisted})"


class GatewayRespondedEvent(BaseModel, BaseEvent):
    """Result: encoded signed answer to return with HTTP 200."""
    state: ClassVar[str] = "Responded"
    data: str

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return "GatewayRespondedEvent()"


class GatewayFailedEvent(BaseModel, BaseEvent):
    """Result: the request failed; carries the HTTP status and error body."""
    state: ClassVar[str] = "Failed"
    status_code: int
    error_code: str
    error: str
    details: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"GatewayFailedEvent(status={self.status_code}, code={self.error_code})"


# ==================== Relay Events ====================

class RelayRequestEvent(BaseModel, BaseEvent):
    """External trigger: relay a signed transfer authorization."""
    state: ClassVar[str] = "RelayRequested"
    authorization: MetaTxAuthorization

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"RelayRequestEvent(sender={self.authorization.sender}, signature=***)"


class RelaySucceededEvent(BaseModel, BaseEvent):
    """Result: transaction accepted on chain (mined or still pending)."""
    state: ClassVar[str] = "RelaySucceeded"
    result: RelayResult

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"RelaySucceededEvent(tx_hash={self.result.tx_hash}, status={self.result.status.value})"


class RelayFailedEvent(BaseModel, BaseEvent):
    """Result: relay rejected or reverted."""
    state: ClassVar[str] = "RelayFailed"
    status_code: int
    error_code: str
    error: str
    details: Optional[str] = None
    retryable: bool = False
    tx_hash: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"RelayFailedEvent(status={self.status_code}, code={self.error_code})"


class BreakEvent(BaseModel, BaseEvent):
    """Internal event to break the event chain."""
    break_reason: str = ""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return "BreakEvent()"


# ==================== Transitions ====================

ALLOWED_TRANSITIONS: Dict[type, Tuple[type, ...]] = {
    GatewayRequestEvent: (RequestValidatedEvent, GatewayFailedEvent),
    RequestValidatedEvent: (AnswerResolvedEvent, GatewayFailedEvent),
    AnswerResolvedEvent: (AnswerSignedEvent, GatewayFailedEvent),
    AnswerSignedEvent: (RecordPersistedEvent, GatewayFailedEvent),
    RecordPersistedEvent: (GatewayRespondedEvent,),
    RelayRequestEvent: (RelaySucceededEvent, RelayFailedEvent),
}


# ==================== Dependencies Container ====================

@dataclass(frozen=True)
class Dependencies:
    """Container for infrastructure dependencies (read-only)."""
    store: Any = None
    query_resolver: Any = None
    signer: Any = None
    relayer: Any = None
    registrar: Any = None
    sync_token_key: Optional[str] = None
    default_chain_id: Optional[int] = None
    default_registry: Optional[str] = None


# ==================== Event Bus ====================

EventHandlerFunc = Callable[[BaseEvent, Dependencies], Awaitable[Optional[BaseEvent]]]
EventHookFunc = Callable[[BaseEvent, Dependencies], Awaitable[None]]


class EventBus:
    """Event dispatcher for publishing and subscribing to events."""

    def __init__(self) -> None:
        """Initialize with empty subscribers and hooks."""
        self._subscribers: Dict[type, list[EventHandlerFunc]] = {}
        self._hooks: Dict[type, list[EventHookFunc]] = {}

    def subscribe(self, event_class: type[BaseEvent], handler: EventHandlerFunc) -> None:
        """
        Register an async handler for the given event class.
        Multiple handlers can be subscribed to the same event type and run in parallel.

        Args:
            event_class: The event class to subscribe to.
            handler: The async handler function to call when the event is published.

        Raises:
            TypeError: If handler is not a coroutine function.
        """
        if not inspect.iscoroutinefunction(handler):
            raise TypeError(f"Handler must be a coroutine function, got {type(handler).__name__}")

        self._subscribers.setdefault(event_class, []).append(handler)

    def hook(self, event_class: type[BaseEvent], hook_func: EventHookFunc) -> None:
        """
        Register a hook for the given event class.
        Hooks are executed before subscribers when the event is dispatched.

        Args:
            event_class: The event class to hook into.
            hook_func: The hook function to call when the event is published.
        """
        if not inspect.iscoroutinefunction(hook_func):
            raise TypeError(f"Hook must be a coroutine function, got {type(hook_func).__name__}")

        self._hooks.setdefault(event_class, []).append(hook_func)

    async def dispatch(self, event: BaseEvent, deps: Dependencies) -> AsyncGenerator[Optional[BaseEvent], None]:
        """
        Dispatch an event to all registered hooks and subscribers.
        Hooks run first, then all subscribers run in parallel.

        Args:
            event: The event to dispatch.
            deps: Dependencies container with injected services.

        Yields:
            Results from all subscribers as they complete. Yields nothing if no subscribers are registered.
        """
        hooks = self._hooks.get(type(event), [])
        await asyncio.gather(*(hook(event, deps) for hook in hooks))

        handlers = self._subscribers.get(type(event), [])
        if not handlers:
            return

        tasks = [handler(event, deps) for handler in handlers]
        for coro in asyncio.as_completed(tasks):
            result = await coro
            yield result
