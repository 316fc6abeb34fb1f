"""Tenant-scoped event fan-out for live dashboards."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Dict[str, Any]], None]


class EventPublisher(Protocol):
    def emit_to_tenant(self, city_id: Optional[str], event: str, payload: Dict[str, Any]) -> None:
        ...


class TenantEventHub:
    """
    In-process publish/subscribe keyed by city.

    emit_to_tenant() is fire-and-forget: it never raises, and a failing
    subscriber is logged and skipped. Subscribing with city_id=None receives
    events for every city, which is what an unscoped super admin sees; events
    that belong to no city (a cityless super admin's session) reach only
    those listeners.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[Optional[str], List[Subscriber]] = {}

    def subscribe(self, city_id: Optional[str], callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(city_id, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(city_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(city_id, None)

        return unsubscribe

    def subscriber_count(self, city_id: Optional[str] = None) -> int:
        with self._lock:
            return len(self._subscribers.get(city_id, []))

    def total_subscribers(self) -> int:
        with self._lock:
            return sum(len(callbacks) for callbacks in self._subscribers.values())

    def emit_to_tenant(self, city_id: Optional[str], event: str, payload: Dict[str, Any]) -> None:
        city_id = city_id or None
        with self._lock:
            targets = list(self._subscribers.get(None, []))
            if city_id is not None:
                targets = list(self._subscribers.get(city_id, [])) + targets
        for callback in targets:
            try:
                callback(event, dict(payload, city_id=city_id))
            except Exception:
                logger.warning("Subscriber failed for %s in city %s", event, city_id, exc_info=True)


event_hub = TenantEventHub()
