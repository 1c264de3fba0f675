"""Image lifecycle notifications.

A minimal publish interface: subscribers are plain callables invoked
synchronously in subscription order. Emission is fire-and-forget; a failing
subscriber is logged and never affects the emitter or other subscribers.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from storyloom.observability.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class ImageQueued:
    """A pending image record exists and generation has been started."""

    image_id: str
    entry_id: str


@dataclass(frozen=True)
class ImageReady:
    """An image reached a terminal state."""

    image_id: str
    entry_id: str
    success: bool


ImageEvent = ImageQueued | ImageReady
Subscriber = Callable[[ImageEvent], None]


class ImageEventBus:
    """Callback registry for image lifecycle events."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for every event.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event: ImageEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                log.warning(
                    "image_event_subscriber_failed",
                    event=type(event).__name__,
                    image_id=event.image_id,
                    error=str(e),
                )

    def emit_queued(self, image_id: str, entry_id: str) -> None:
        self.emit(ImageQueued(image_id=image_id, entry_id=entry_id))

    def emit_ready(self, image_id: str, entry_id: str, success: bool) -> None:
        self.emit(ImageReady(image_id=image_id, entry_id=entry_id, success=success))
