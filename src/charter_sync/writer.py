# SPDX-License-Identifier: MIT
"""Multi-destination writer invoked by the sync engine for each operation."""

import sqlite3
from collections.abc import Callable
from datetime import datetime
from typing import Any

from .clients.protocols import LocalCache, MirrorClient, RecordStoreClient
from .constants import DEFAULT_TABLES
from .enums import DataSourceName, OperationType, ResourceType
from .exceptions import (
    RecordNotFoundError,
    RepairExhaustedError,
    SyncError,
    TransportError,
    UnknownResourceError,
    ValidationFailedError,
)
from .integrity import DataIntegrityValidator
from .logging_config import get_detail_logger, get_status_logger
from .models import SyncOperation
from .registry import DataSourceRegistry
from .scheduler import utc_now


ROOM_PREFIXES: dict[ResourceType, str] = {
    ResourceType.BUSINESS_PLAN: "plan",
    ResourceType.USER_PROFILE: "user",
}


def cache_key(resource: ResourceType, entity_id: str) -> str:
    """Local cache key of an entity."""
    return f"{resource.value}:{entity_id}"


def room_key(resource: ResourceType, entity_id: str) -> str:
    """Mirror room holding an entity."""
    return f"{ROOM_PREFIXES[resource]}_{entity_id}"


def _merge_stored(
    payload: dict[str, Any], stored: dict[str, Any] | None
) -> dict[str, Any]:
    """Overlay what the store returned (its id included) on the sent payload."""
    return {**payload, **{k: v for k, v in (stored or {}).items() if v is not None}}


class MultiDestinationWriter:
    """Validates a payload and writes it to every configured destination.

    The record store is the source of truth: its failures propagate so the
    engine's retry policy applies. The mirror and the local cache are
    conveniences whose failures are logged and recorded in the registry only.

    Without a record store the writer runs in local-only mode: changes land in
    the local cache and succeed immediately.
    """

    def __init__(
        self,
        registry: DataSourceRegistry,
        validator: DataIntegrityValidator,
        record_store: RecordStoreClient | None = None,
        mirror: MirrorClient | None = None,
        local_cache: LocalCache | None = None,
        tables: dict[str, str] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if record_store is None and local_cache is None:
            raise ValueError("Writer needs a record store or a local cache")

        self.registry = registry
        self.validator = validator
        self.record_store = record_store
        self.mirror = mirror
        self.local_cache = local_cache
        self.tables = {**DEFAULT_TABLES, **(tables or {})}
        self._clock = clock
        self.detail_logger = get_detail_logger()
        self.status_logger = get_status_logger()

        if self.local_only:
            self.status_logger.warning(
                "No record store configured; changes are kept in the local cache only"
            )

    @property
    def local_only(self) -> bool:
        return self.record_store is None

    @property
    def _store(self) -> RecordStoreClient:
        if self.record_store is None:
            raise SyncError("No record store configured")
        return self.record_store

    @property
    def _cache(self) -> LocalCache:
        if self.local_cache is None:
            raise SyncError("No local cache configured")
        return self.local_cache

    def _table_for(self, resource: ResourceType) -> str:
        try:
            return self.tables[resource.value]
        except KeyError as e:
            raise UnknownResourceError(
                f"No record store table configured for {resource.value}"
            ) from e

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def write(self, operation: SyncOperation) -> dict[str, Any] | None:
        """Apply one operation to all destinations.

        Args:
            operation: Operation to apply; a repaired payload replaces its own

        Returns:
            The entity as written (the parent plan for section changes), or
            None for deletes

        Raises:
            SyncError: Validation, repair or record store failure
        """
        self.detail_logger.debug(
            f"Writing {operation.type.value} {operation.resource.value} "
            f"for operation {operation.id}"
        )
        if operation.resource == ResourceType.SECTION:
            return await self._write_section(operation)
        if operation.resource in ROOM_PREFIXES:
            return await self._write_entity(operation)
        raise UnknownResourceError(f"Unknown resource type: {operation.resource}")

    def _prepare_payload(
        self, resource: ResourceType, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """Validate a payload, repairing it once when invalid.

        Raises:
            RepairExhaustedError: The repair ceiling for the entity was reached
            ValidationFailedError: The payload is still invalid after repair
        """
        validation = self.validator.validate(resource, payload)
        if validation.is_valid:
            if validation.warnings:
                self.detail_logger.debug(
                    f"{resource.value} warnings: {'; '.join(validation.warnings)}"
                )
            return payload

        self.detail_logger.info(
            f"Invalid {resource.value} payload, attempting repair: "
            f"{', '.join(validation.errors)}"
        )
        repair = self.validator.repair(resource, payload)
        if not repair.success:
            entity_id = payload.get("id")
            if entity_id:
                raise RepairExhaustedError(
                    f"{resource.value}_{entity_id}",
                    self.validator.repair_attempts(resource, entity_id),
                )
            raise ValidationFailedError("Data validation failed", validation.errors)

        revalidation = self.validator.validate(resource, repair.repaired)
        if not revalidation.is_valid:
            raise ValidationFailedError(
                "Data validation failed after repair", revalidation.errors
            )
        return repair.repaired

    @staticmethod
    def _require(payload: dict[str, Any], *fields: str) -> None:
        missing = [name for name in fields if not payload.get(name)]
        if missing:
            raise ValidationFailedError(
                "Delete needs the target id",
                [f"{name}: Field required" for name in missing],
            )

    # ------------------------------------------------------------------
    # Entities (business plans, user profiles)
    # ------------------------------------------------------------------

    async def _write_entity(self, operation: SyncOperation) -> dict[str, Any] | None:
        resource = operation.resource

        if operation.type == OperationType.DELETE:
            self._require(operation.payload, "id")
            entity_id = str(operation.payload["id"])
            if self.local_only:
                self._local_only_write(cache_key(resource, entity_id), None)
                return None
            try:
                await self._store_call(
                    self._store.delete(self._table_for(resource), entity_id)
                )
            except RecordNotFoundError:
                # Already gone, e.g. an earlier attempt landed but timed out
                self.detail_logger.info(
                    f"{resource.value} {entity_id} already absent from the record store"
                )
                self.registry.update_status(DataSourceName.RECORD_STORE, True)
            self._cache_write(cache_key(resource, entity_id), None)
            await self._mirror(room_key(resource, entity_id), None)
            return None

        payload = self._prepare_payload(resource, operation.payload)
        operation.payload = payload

        if self.local_only:
            entity = dict(payload)
            self._local_only_write(cache_key(resource, str(entity["id"])), entity)
            return entity

        table = self._table_for(resource)
        if operation.type == OperationType.CREATE:
            stored = await self._store_call(self._store.create(table, payload))
        else:
            stored = await self._store_call(
                self._store.update(table, str(payload["id"]), payload)
            )

        entity = _merge_stored(payload, stored)
        entity_id = str(entity["id"])
        self._cache_write(cache_key(resource, entity_id), entity)
        await self._mirror(room_key(resource, entity_id), entity)
        return entity

    # ------------------------------------------------------------------
    # Sections (read-modify-write of the parent plan)
    # ------------------------------------------------------------------

    async def _write_section(self, operation: SyncOperation) -> dict[str, Any]:
        validation = self.validator.validate(
            ResourceType.SECTION, operation.payload, operation.type
        )
        if not validation.is_valid:
            raise ValidationFailedError("Invalid section change", validation.errors)

        plan_id = str(operation.payload["plan_id"])
        section_id = str(operation.payload["section_id"])
        plan_key = cache_key(ResourceType.BUSINESS_PLAN, plan_id)

        table = self._table_for(ResourceType.BUSINESS_PLAN)
        if self.local_only:
            current = self._cache.get(plan_key)
        else:
            current = await self._store_call(self._store.get(table, plan_id))
        if current is None:
            raise RecordNotFoundError(f"Business plan {plan_id} not found")

        sections = dict(current.get("sections") or {})
        if operation.type == OperationType.DELETE:
            sections.pop(section_id, None)
        else:
            sections[section_id] = operation.payload["content"]

        merged = {
            **current,
            "id": plan_id,
            "sections": sections,
            "updated_at": self._clock().isoformat(),
        }
        # The merged plan is what gets written, so it is what must be valid
        merged = self._prepare_payload(ResourceType.BUSINESS_PLAN, merged)

        if self.local_only:
            self._local_only_write(plan_key, merged)
            return merged

        stored = await self._store_call(self._store.update(table, plan_id, merged))
        entity = _merge_stored(merged, stored)
        self._cache_write(plan_key, entity)
        await self._mirror(room_key(ResourceType.BUSINESS_PLAN, plan_id), entity)
        return entity

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(
        self, resource: ResourceType | str, entity_id: str
    ) -> dict[str, Any] | None:
        """Read an entity, falling back to the local cache when the store fails.

        The cache answers directly while the registry marks the record store
        unavailable and the entity is cached.

        Raises:
            UnknownResourceError: For section reads (read the parent plan)
            TransportError: The store failed and the cache has no copy
        """
        resource = ResourceType(resource)
        if resource not in ROOM_PREFIXES:
            raise UnknownResourceError(
                f"Cannot read {resource.value} directly; read the parent business plan"
            )
        key = cache_key(resource, entity_id)

        if self.local_only:
            return self._cache_read(key)

        if not self.registry.is_available(DataSourceName.RECORD_STORE):
            cached = self._cache_read(key)
            if cached is not None:
                self.detail_logger.debug(
                    f"Record store unavailable, served {key} from cache"
                )
                return cached

        try:
            entity = await self._store_call(
                self._store.get(self._table_for(resource), entity_id)
            )
        except TransportError as e:
            cached = self._cache_read(key)
            if cached is None:
                raise
            self.status_logger.warning(
                f"Record store read failed, using cached {key}: {e}"
            )
            return cached

        if entity is not None:
            self._cache_write(key, entity)
        return entity

    # ------------------------------------------------------------------
    # Destinations
    # ------------------------------------------------------------------

    async def _store_call(self, call: Any) -> Any:
        """Await a record store call and report the outcome to the registry."""
        try:
            result = await call
        except RecordNotFoundError as e:
            # The store answered; the record is missing
            self.registry.update_status(DataSourceName.RECORD_STORE, True, e)
            raise
        except Exception as e:
            self.registry.update_status(DataSourceName.RECORD_STORE, False, e)
            raise
        self.registry.update_status(DataSourceName.RECORD_STORE, True)
        return result

    async def _mirror(self, room: str, entity: dict[str, Any] | None) -> None:
        if self.mirror is None:
            return
        try:
            await self.mirror.mirror(room, entity)
        except Exception as e:
            self.status_logger.warning(f"Failed to mirror {room}: {e}")
            self.detail_logger.exception(f"Mirror failure for room {room}")
            self.registry.update_status(DataSourceName.MIRROR, False, e)
            return
        self.registry.update_status(DataSourceName.MIRROR, True)

    def _cache_read(self, key: str) -> dict[str, Any] | None:
        if self.local_cache is None:
            return None
        try:
            return self.local_cache.get(key)
        except (sqlite3.Error, OSError, ValueError) as e:
            self.detail_logger.exception(f"Local cache read of {key} failed: {e}")
            self.registry.update_status(DataSourceName.LOCAL_CACHE, False, e)
            return None

    def _cache_write(self, key: str, entity: dict[str, Any] | None) -> None:
        if self.local_cache is None:
            return
        try:
            if entity is None:
                self.local_cache.delete(key)
            else:
                self.local_cache.set(key, entity)
        except (sqlite3.Error, OSError, ValueError, TypeError) as e:
            self.detail_logger.exception(f"Local cache write of {key} failed: {e}")
            self.registry.update_status(DataSourceName.LOCAL_CACHE, False, e)
            return
        self.registry.update_status(DataSourceName.LOCAL_CACHE, True)

    def _local_only_write(self, key: str, entity: dict[str, Any] | None) -> None:
        """Write to the cache as the only destination; failures propagate."""
        try:
            if entity is None:
                self._cache.delete(key)
            else:
                self._cache.set(key, entity)
        except (sqlite3.Error, OSError, ValueError, TypeError) as e:
            self.registry.update_status(DataSourceName.LOCAL_CACHE, False, e)
            raise SyncError(
                f"Local cache write of {key} failed: {e}",
                source_name=DataSourceName.LOCAL_CACHE.value,
            ) from e
        self.registry.update_status(DataSourceName.LOCAL_CACHE, True)
