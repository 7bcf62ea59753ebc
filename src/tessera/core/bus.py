"""Typed event bus for the live event stream.

Events are declared once with a pydantic payload model and published on a
``Bus`` instance. Each session is handed its own bus (or none), so there is
no process-wide subscriber state.

Example:
    class TurnStartProps(BaseModel):
        turn: int

    TurnStart = BusEvent.define("turn.start", TurnStartProps)

    bus = Bus()
    unsubscribe = bus.subscribe(TurnStart, lambda event: print(event.payload))
    await bus.publish(TurnStart, TurnStartProps(turn=1))
    unsubscribe()
"""

import traceback
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)

_log: Optional[Any] = None


def _get_log():
    global _log
    if _log is None:
        from ..util.log import Log
        _log = Log.create({"service": "bus"})
    return _log


class BusEvent(Generic[T]):
    """Event definition: a type discriminator plus a payload schema."""

    def __init__(self, event_type: str, payload_type: type[T]):
        self.type = event_type
        self.payload_type = payload_type

    @staticmethod
    def define(event_type: str, payload_type: type[T]) -> "BusEvent[T]":
        """Define an event type and record it for introspection."""
        event = BusEvent(event_type, payload_type)
        _registry[event_type] = event
        return event


_registry: Dict[str, BusEvent] = {}


def registered_events() -> Dict[str, BusEvent]:
    return dict(_registry)


class EventPayload(BaseModel):
    """Self-describing event delivered to subscribers."""
    type: str
    payload: Dict[str, Any]


SubscriptionCallback = Callable[[EventPayload], Union[None, Awaitable[None]]]


class Bus:
    """Instance-scoped publish/subscribe.

    Subscriber failures are logged and never propagate to the publisher.
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[SubscriptionCallback]] = {}

    async def publish(self, event: BusEvent[T], payload: Union[T, Dict[str, Any]]) -> None:
        if not isinstance(payload, event.payload_type):
            if isinstance(payload, dict):
                payload = event.payload_type(**payload)
            else:
                raise TypeError(f"Payload must be instance of {event.payload_type.__name__}")

        message = EventPayload(type=event.type, payload=payload.model_dump(mode="json"))

        callbacks: List[SubscriptionCallback] = []
        for key in (event.type, "*"):
            callbacks.extend(self._subscriptions.get(key, []))

        for callback in callbacks:
            try:
                result = callback(message)
                if hasattr(result, "__await__"):
                    await result
            except Exception as e:
                _get_log().error("subscription callback failed", {
                    "error": str(e),
                    "type": event.type,
                    "traceback": traceback.format_exc(),
                })

    def subscribe(self, event: BusEvent[T], callback: SubscriptionCallback) -> Callable[[], None]:
        return self._raw_subscribe(event.type, callback)

    def subscribe_all(self, callback: SubscriptionCallback) -> Callable[[], None]:
        return self._raw_subscribe("*", callback)

    def _raw_subscribe(self, event_type: str, callback: SubscriptionCallback) -> Callable[[], None]:
        self._subscriptions.setdefault(event_type, []).append(callback)

        def unsubscribe() -> None:
            subs = self._subscriptions.get(event_type, [])
            if callback in subs:
                subs.remove(callback)

        return unsubscribe

    def clear(self) -> None:
        self._subscriptions.clear()
