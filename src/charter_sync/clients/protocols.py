# SPDX-License-Identifier: MIT
"""Protocol definitions for the collaborators the writer talks to."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class RecordStoreClient(Protocol):
    """Protocol for the durable, authoritative record store.

    Records are plain dictionaries carrying their store id under ``"id"``.
    Implementations raise ``TransportError`` subclasses for network failures
    and non-success responses; ``get`` returns None for a missing record
    while ``update`` and ``delete`` raise ``RecordNotFoundError``.

    Example implementations:
    - AirtableRecordStore (HTTP, aiohttp)
    - In-memory fakes used by the test suite
    """

    async def create(self, table: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Create a record and return it as stored."""
        ...

    async def update(
        self, table: str, record_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        """Update fields of an existing record and return it as stored."""
        ...

    async def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        """Fetch a record, or None when it does not exist."""
        ...

    async def delete(self, table: str, record_id: str) -> None:
        """Delete a record."""
        ...


@runtime_checkable
class MirrorClient(Protocol):
    """Protocol for the real-time collaborative storage backend.

    Mirroring is best effort: the writer logs failures and carries on, the
    record store stays the source of truth.
    """

    async def mirror(self, room_key: str, entity: dict[str, Any] | None) -> None:
        """Publish the entity state of a room; None removes it."""
        ...


@runtime_checkable
class LocalCache(Protocol):
    """Protocol for the synchronous local/offline cache keyed by entity."""

    def get(self, key: str) -> dict[str, Any] | None:
        """Return the cached entity or None."""
        ...

    def set(self, key: str, value: dict[str, Any]) -> None:
        """Store an entity."""
        ...

    def delete(self, key: str) -> None:
        """Forget an entity; missing keys are ignored."""
        ...
