"""Tests for image lifecycle notifications."""

from __future__ import annotations

from storyloom.images.events import ImageEventBus, ImageQueued, ImageReady


def test_subscribers_receive_events_in_order() -> None:
    bus = ImageEventBus()
    received: list[object] = []
    bus.subscribe(received.append)

    bus.emit_queued("img", "entry")
    bus.emit_ready("img", "entry", True)

    assert received == [
        ImageQueued(image_id="img", entry_id="entry"),
        ImageReady(image_id="img", entry_id="entry", success=True),
    ]


def test_unsubscribe() -> None:
    bus = ImageEventBus()
    received: list[object] = []
    unsubscribe = bus.subscribe(received.append)

    unsubscribe()
    unsubscribe()
    bus.emit_queued("img", "entry")

    assert received == []


def test_failing_subscriber_does_not_block_others() -> None:
    bus = ImageEventBus()
    received: list[object] = []

    def _broken(_event: object) -> None:
        raise RuntimeError("listener bug")

    bus.subscribe(_broken)
    bus.subscribe(received.append)

    bus.emit_ready("img", "entry", False)

    assert received == [ImageReady(image_id="img", entry_id="entry", success=False)]


def test_emit_without_subscribers() -> None:
    ImageEventBus().emit_queued("img", "entry")
