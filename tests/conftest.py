# SPDX-License-Identifier: MIT
"""Pytest configuration and shared fixtures."""

import asyncio
import copy
import itertools
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from charter_sync.clients import InMemoryLocalCache
from charter_sync.config import SyncConfig, reset_config_manager
from charter_sync.engine import SyncEngine
from charter_sync.enums import DataSourceName
from charter_sync.exceptions import RecordNotFoundError
from charter_sync.integrity import DataIntegrityValidator
from charter_sync.network import NetworkMonitor
from charter_sync.registry import DataSourceRegistry
from charter_sync.scheduler import ManualScheduler
from charter_sync.writer import MultiDestinationWriter


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeRecordStore:
    """In-memory record store with scripted failures.

    ``failures`` are raised one per call in order; ``fail_with`` is raised on
    every call while set. With ``gate`` set, calls block until it is released.
    """

    def __init__(self, assign_ids: bool = False) -> None:
        self.records: dict[str, dict[str, dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, str | None]] = []
        self.failures: list[Exception] = []
        self.fail_with: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.assign_ids = assign_ids
        self.in_flight = 0
        self.max_in_flight = 0
        self._ids = itertools.count(1)

    def seed(self, table: str, record: dict[str, Any]) -> None:
        self.records.setdefault(table, {})[record["id"]] = copy.deepcopy(record)

    def stored(self, table: str, record_id: str) -> dict[str, Any] | None:
        return self.records.get(table, {}).get(record_id)

    async def _enter(self, method: str, table: str, record_id: str | None) -> None:
        self.calls.append((method, table, record_id))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if self.fail_with is not None:
                raise self.fail_with
            if self.failures:
                raise self.failures.pop(0)
        finally:
            self.in_flight -= 1

    async def create(self, table: str, fields: dict[str, Any]) -> dict[str, Any]:
        await self._enter("create", table, fields.get("id"))
        record_id = f"rec{next(self._ids)}" if self.assign_ids else fields["id"]
        record = {**copy.deepcopy(fields), "id": record_id}
        self.seed(table, record)
        return copy.deepcopy(record)

    async def update(
        self, table: str, record_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        await self._enter("update", table, record_id)
        current = self.stored(table, record_id)
        if current is None:
            raise RecordNotFoundError(f"Record {record_id} not found in '{table}'")
        current.update(copy.deepcopy(fields))
        current["id"] = record_id
        return copy.deepcopy(current)

    async def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        await self._enter("get", table, record_id)
        record = self.stored(table, record_id)
        return copy.deepcopy(record) if record is not None else None

    async def delete(self, table: str, record_id: str) -> None:
        await self._enter("delete", table, record_id)
        if self.records.get(table, {}).pop(record_id, None) is None:
            raise RecordNotFoundError(f"Record {record_id} not found in '{table}'")


class FakeMirror:
    """Records the latest state per room."""

    def __init__(self) -> None:
        self.rooms: dict[str, dict[str, Any] | None] = {}
        self.calls: list[str] = []
        self.fail_with: Exception | None = None

    async def mirror(self, room_key: str, entity: dict[str, Any] | None) -> None:
        self.calls.append(room_key)
        if self.fail_with is not None:
            raise self.fail_with
        self.rooms[room_key] = copy.deepcopy(entity)


@pytest.fixture(autouse=True)
def isolated_config_manager():
    """Make sure no test sees a config manager created by another."""
    reset_config_manager()
    yield
    reset_config_manager()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def record_store():
    return FakeRecordStore()


@pytest.fixture
def mirror():
    return FakeMirror()


@pytest.fixture
def local_cache():
    return InMemoryLocalCache()


@pytest.fixture
def registry(clock):
    registry = DataSourceRegistry(clock=clock)
    for name in DataSourceName:
        registry.register(name)
    return registry


@pytest.fixture
def validator(clock):
    return DataIntegrityValidator(clock=clock)


@pytest.fixture
def writer(registry, validator, record_store, mirror, local_cache, clock):
    return MultiDestinationWriter(
        registry,
        validator,
        record_store=record_store,
        mirror=mirror,
        local_cache=local_cache,
        clock=clock,
    )


@pytest.fixture
def network():
    return NetworkMonitor()


@pytest.fixture
def engine(writer, network, scheduler, clock):
    return SyncEngine(
        writer,
        config=SyncConfig(),
        network=network,
        scheduler=scheduler,
        clock=clock,
    )


@pytest.fixture
def make_plan() -> Callable[..., dict[str, Any]]:
    """Factory for valid business plan payloads."""

    def _make(plan_id: str = "plan_1", **overrides: Any) -> dict[str, Any]:
        plan = {
            "id": plan_id,
            "title": "Acme Coffee Roasters",
            "description": "Specialty coffee for offices",
            "sections": {"summary": "We roast coffee.", "market": "Offices"},
            "user_id": "user_1",
            "status": "draft",
            "created_at": "2024-02-01T10:00:00+00:00",
            "updated_at": "2024-02-02T10:00:00+00:00",
        }
        plan.update(overrides)
        return plan

    return _make


@pytest.fixture
def make_profile() -> Callable[..., dict[str, Any]]:
    """Factory for valid user profile payloads."""

    def _make(user_id: str = "user_1", **overrides: Any) -> dict[str, Any]:
        profile = {
            "id": user_id,
            "email": "founder@acme.io",
            "full_name": "Sam Founder",
            "company": "Acme",
            "role": "CEO",
            "created_at": "2024-02-01T10:00:00+00:00",
            "updated_at": "2024-02-01T10:00:00+00:00",
        }
        profile.update(overrides)
        return profile

    return _make


@pytest.fixture
def wait_until():
    """Yield to the event loop until a predicate holds."""

    async def _wait(predicate: Callable[[], bool], attempts: int = 100) -> None:
        for _ in range(attempts):
            if predicate():
                return
            await asyncio.sleep(0)
        raise AssertionError("Condition not reached")

    return _wait
