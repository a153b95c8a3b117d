# geolocation.py
# Geolocation source abstraction.
# Fixes and errors arrive through one typed event channel; subscribing
# returns a handle that must be passed back to unsubscribe().

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Protocol, Union

from .errors import GeolocationError
from .models import PositionFix

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event channel
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FixReceived:
    fix: PositionFix


@dataclass(frozen=True)
class FixFailed:
    error: GeolocationError


GeolocationEvent = Union[FixReceived, FixFailed]
EventHandler = Callable[[GeolocationEvent], None]


@dataclass(frozen=True)
class WatchOptions:
    high_accuracy: bool = True
    timeout_ms: int = 10_000


@dataclass(frozen=True)
class Subscription:
    """Opaque handle returned by subscribe()."""
    handle_id: int


class GeolocationSource(Protocol):
    def subscribe(self, on_event: EventHandler, options: WatchOptions) -> Subscription:
        ...

    def unsubscribe(self, subscription: Subscription) -> None:
        ...


# ---------------------------------------------------------------------------
# Simulated source
# ---------------------------------------------------------------------------

class SimulatedGeolocationSource:
    """
    In-process geolocation source.

    Events are pushed with emit(), or replayed from a list with replay().
    Used by the demo entry point and the tests in place of a real GPS feed.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._handlers: Dict[int, EventHandler] = {}
        self.last_options: Optional[WatchOptions] = None

    def subscribe(self, on_event: EventHandler, options: WatchOptions) -> Subscription:
        sub = Subscription(next(self._ids))
        self._handlers[sub.handle_id] = on_event
        self.last_options = options
        logger.debug(f"Geolocation subscription {sub.handle_id} opened")
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._handlers.pop(subscription.handle_id, None) is not None:
            logger.debug(f"Geolocation subscription {subscription.handle_id} closed")

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def emit(self, event: GeolocationEvent) -> None:
        """Deliver one event to every current subscriber, in subscription order."""
        for handler in list(self._handlers.values()):
            handler(event)

    def emit_fix(self, lat: float, lon: float, timestamp_ms: float) -> None:
        self.emit(FixReceived(PositionFix(lat, lon, timestamp_ms)))

    def emit_error(self, error: GeolocationError) -> None:
        self.emit(FixFailed(error))

    async def replay(self, fixes: Iterable[PositionFix], interval_s: float = 0.0) -> None:
        """Emit each fix in order, sleeping interval_s between them."""
        for fix in fixes:
            self.emit(FixReceived(fix))
            await asyncio.sleep(interval_s)
