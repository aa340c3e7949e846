"""
Process-wide "unauthenticated" notification.

Emitted when a session cannot be recovered; listeners (a UI router, a CLI)
react by sending the user back to the login flow. Bursts of failing requests
produce a single notification: emissions closer together than the minimum
interval are dropped.
"""

import logging
import time
from typing import Callable, List, Optional

from ella_shared.models import UnauthorizedEvent

logger = logging.getLogger(__name__)

AUTH_UNAUTHORIZED_EVENT = "ella:auth:unauthorized"

UnauthorizedListener = Callable[[UnauthorizedEvent], None]


class UnauthorizedNotifier:
    """
    Publish/subscribe channel for the unauthenticated signal.

    Rate limiting is a plain timestamp comparison against the last delivered
    emission.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        event_name: str = AUTH_UNAUTHORIZED_EVENT
    ):
        self.min_interval = min_interval
        self.event_name = event_name
        self._clock = clock
        self._listeners: List[UnauthorizedListener] = []
        self._last_emitted_at: Optional[float] = None

    def subscribe(self, listener: UnauthorizedListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, reason: str) -> bool:
        """
        Deliver the signal to every listener.

        Returns:
            False if the emission was dropped by the rate limit
        """
        now = self._clock()
        if self._last_emitted_at is not None and now - self._last_emitted_at < self.min_interval:
            logger.debug(f"Unauthenticated notification suppressed ({reason})")
            return False
        self._last_emitted_at = now

        event = UnauthorizedEvent(name=self.event_name, reason=reason)
        logger.info(f"Emitting unauthenticated notification: {reason}")

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in unauthenticated listener: {e}")

        return True

    def reset(self) -> None:
        """Forget the last emission time."""
        self._last_emitted_at = None

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


unauthorized_events = UnauthorizedNotifier()


def emit_unauthorized(reason: str) -> bool:
    """Emit on the process-wide notifier."""
    return unauthorized_events.emit(reason)


def on_unauthorized(listener: UnauthorizedListener) -> Callable[[], None]:
    """Subscribe to the process-wide notifier."""
    return unauthorized_events.subscribe(listener)
