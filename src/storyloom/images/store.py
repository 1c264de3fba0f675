"""Storage protocol for embedded image records and an in-memory implementation.

The pipeline only needs create / partial update / lookup by id and by owning
entry. Durable backends live with the host application; ``InMemoryImageStore``
backs the CLI and tests.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from storyloom.images.models import STATUS_TRANSITIONS, EmbeddedImage, ImageStatus


class ImageNotFoundError(KeyError):
    """Raised when updating an image id the store does not hold."""


class InvalidStatusTransitionError(ValueError):
    """Raised when an update would move an image backwards or out of a terminal state."""

    def __init__(self, image_id: str, current: ImageStatus, requested: ImageStatus) -> None:
        self.image_id = image_id
        self.current = current
        self.requested = requested
        super().__init__(f"Image {image_id}: cannot move from {current} to {requested}")


@runtime_checkable
class ImageStore(Protocol):
    """Record store for embedded images."""

    async def create(self, image: EmbeddedImage) -> None:
        """Persist a new record."""
        ...

    async def update(self, image_id: str, **fields: Any) -> None:
        """Merge ``fields`` into an existing record."""
        ...

    async def get(self, image_id: str) -> EmbeddedImage | None:
        """Return a record by id, or None."""
        ...

    async def list_for_entry(self, entry_id: str) -> list[EmbeddedImage]:
        """Return the records owned by a story entry, oldest first."""
        ...

    async def delete_for_entry(self, entry_id: str) -> int:
        """Delete every record owned by an entry; return how many were removed."""
        ...


class InMemoryImageStore:
    """Dict-backed ``ImageStore``.

    Status updates are checked against the lifecycle so a terminal record is
    never modified again.
    """

    def __init__(self) -> None:
        self._images: dict[str, EmbeddedImage] = {}

    async def create(self, image: EmbeddedImage) -> None:
        if image.id in self._images:
            raise ValueError(f"Image {image.id} already exists")
        self._images[image.id] = image.model_copy()

    async def update(self, image_id: str, **fields: Any) -> None:
        current = self._images.get(image_id)
        if current is None:
            raise ImageNotFoundError(image_id)

        if "status" in fields:
            requested = ImageStatus(fields["status"])
            if requested is not current.status and requested not in STATUS_TRANSITIONS[
                current.status
            ]:
                raise InvalidStatusTransitionError(image_id, current.status, requested)
            fields["status"] = requested

        self._images[image_id] = current.model_copy(update=fields)

    async def get(self, image_id: str) -> EmbeddedImage | None:
        image = self._images.get(image_id)
        return image.model_copy() if image else None

    async def list_for_entry(self, entry_id: str) -> list[EmbeddedImage]:
        images = [img for img in self._images.values() if img.entry_id == entry_id]
        return [img.model_copy() for img in sorted(images, key=lambda i: i.created_at)]

    async def delete_for_entry(self, entry_id: str) -> int:
        doomed = [iid for iid, img in self._images.items() if img.entry_id == entry_id]
        for image_id in doomed:
            del self._images[image_id]
        return len(doomed)

    def all(self) -> list[EmbeddedImage]:
        """Snapshot of every record (for inspection and tests)."""
        return [img.model_copy() for img in self._images.values()]
