# SPDX-License-Identifier: MIT
"""Tests for the sync queue processor."""

import asyncio

import pytest
from charter_sync.config import SyncConfig
from charter_sync.engine import SyncEngine
from charter_sync.enums import (
    DataSourceName,
    OperationStatus,
    OperationType,
    ResourceType,
)
from charter_sync.exceptions import (
    MirrorError,
    RateLimitError,
    TransportConnectionError,
    TransportError,
    TransportTimeoutError,
)
from charter_sync.models import OperationRequest
from charter_sync.registry import DataSourceRegistry
from charter_sync.writer import MultiDestinationWriter


def create_plan(payload):
    return {"type": "create", "resource": "business_plan", "payload": payload}


def dispatched_ids(record_store):
    return [record_id for _, _, record_id in record_store.calls]


class TestEnqueue:
    """Test cases for queueing operations."""

    def test_enqueue_without_event_loop_only_queues(self, engine, make_plan):
        """Test that enqueue outside a loop queues without dispatching."""
        op_id = engine.enqueue(create_plan(make_plan()))

        assert op_id.startswith("sync_")
        status = engine.get_status()
        assert status.pending_operations == 1
        assert status.is_syncing is False

        [operation] = engine.pending()
        assert operation.id == op_id
        assert operation.status == OperationStatus.PENDING
        assert operation.retry_count == 0

    def test_enqueue_accepts_operation_request(self, engine, make_profile):
        """Test enqueueing a typed request."""
        request = OperationRequest(
            type=OperationType.UPDATE,
            resource=ResourceType.USER_PROFILE,
            payload=make_profile(),
        )
        engine.enqueue(request)

        [operation] = engine.pending()
        assert operation.type == OperationType.UPDATE
        assert operation.resource == ResourceType.USER_PROFILE

    def test_enqueue_reports_unknown_resource(self, engine):
        """Test that an unknown resource is reported, not raised."""
        op_id = engine.enqueue({"type": "create", "resource": "team", "payload": {}})

        status = engine.get_status()
        assert status.pending_operations == 0
        [error] = status.errors
        assert error.startswith(
            f"Operation {op_id} (team) failed: Invalid operation request: resource:"
        )

    def test_enqueue_reports_unknown_type(self, engine):
        listener_calls = []
        engine.on_status_change(listener_calls.append)

        op_id = engine.enqueue({"type": "upsert", "resource": "business_plan"})

        assert engine.pending() == []
        assert engine.get_status().errors[0].startswith(
            f"Operation {op_id} (business_plan) failed: Invalid operation request: type:"
        )
        assert len(listener_calls[-1].errors) == 1

    def test_enqueue_reports_non_mapping_request(self, engine):
        op_id = engine.enqueue(None)

        assert engine.get_status().errors[0].startswith(f"Operation {op_id} (unknown)")

    def test_enqueue_copies_payload(self, engine, make_plan):
        """Test that later caller mutations do not leak into the queue."""
        payload = make_plan()
        engine.enqueue(create_plan(payload))
        payload["title"] = "Changed"
        payload["sections"]["summary"] = "Changed"

        [operation] = engine.pending()
        assert operation.payload["title"] == "Acme Coffee Roasters"
        assert operation.payload["sections"]["summary"] == "We roast coffee."


class TestDraining:
    """Test cases for FIFO dispatch."""

    @pytest.mark.asyncio
    async def test_operations_dispatch_in_enqueue_order(
        self, engine, record_store, make_plan
    ):
        """Test that operations reach the store in enqueue order."""
        for index in range(3):
            engine.enqueue(create_plan(make_plan(f"plan_{index}")))

        await engine.force_sync()

        assert dispatched_ids(record_store) == ["plan_0", "plan_1", "plan_2"]
        status = engine.get_status()
        assert status.pending_operations == 0
        assert status.is_syncing is False

    @pytest.mark.asyncio
    async def test_successful_sync_updates_status_and_destinations(
        self, engine, record_store, mirror, local_cache, clock, make_plan
    ):
        """Test the online happy path end to end."""
        engine.enqueue(create_plan(make_plan("plan_7")))

        await engine.force_sync()

        status = engine.get_status()
        assert status.pending_operations == 0
        assert status.last_sync_time == clock.now
        assert status.errors == []
        assert record_store.stored("Business Plans", "plan_7")["title"] == (
            "Acme Coffee Roasters"
        )
        assert local_cache.get("business_plan:plan_7")["id"] == "plan_7"
        assert mirror.rooms["plan_plan_7"]["title"] == "Acme Coffee Roasters"

    @pytest.mark.asyncio
    async def test_only_one_operation_in_flight(
        self, engine, record_store, make_plan, wait_until
    ):
        """Test that overlapping triggers never dispatch concurrently."""
        record_store.gate = asyncio.Event()
        for index in range(3):
            engine.enqueue(create_plan(make_plan(f"plan_{index}")))

        await wait_until(lambda: record_store.in_flight == 1)
        assert engine.get_status().is_syncing is True
        in_progress = [
            op for op in engine.pending() if op.status == OperationStatus.IN_PROGRESS
        ]
        assert len(in_progress) == 1

        forced = asyncio.create_task(engine.force_sync())
        engine.enqueue(create_plan(make_plan("plan_3")))
        await asyncio.sleep(0)
        assert record_store.in_flight == 1

        record_store.gate.set()
        await forced

        assert record_store.max_in_flight == 1
        assert dispatched_ids(record_store) == ["plan_0", "plan_1", "plan_2", "plan_3"]

    @pytest.mark.asyncio
    async def test_repaired_payload_is_written(self, engine, record_store):
        """Test that an incomplete payload is repaired before it is written."""
        engine.enqueue(create_plan({"id": "plan_9", "sections": {"intro": "Hi"}}))

        await engine.force_sync()

        stored = record_store.stored("Business Plans", "plan_9")
        assert stored["title"] == "Untitled Business Plan"
        assert stored["status"] == "draft"
        assert stored["created_at"] == stored["updated_at"]
        assert engine.get_status().errors == []


class TestRetries:
    """Test cases for retry, backoff and the retry ceiling."""

    @pytest.mark.asyncio
    async def test_failed_attempt_waits_for_backoff(
        self, engine, record_store, scheduler, make_plan
    ):
        """Test that a retry is not attempted before its backoff delay."""
        record_store.failures = [TransportConnectionError("connection refused")]
        engine.enqueue(create_plan(make_plan()))
        await engine.join()

        [operation] = engine.pending()
        assert operation.retry_count == 1
        assert operation.status == OperationStatus.PENDING
        assert operation.last_error == "connection refused"
        assert operation.next_attempt_at == 1.0
        assert scheduler.pending_timers() == [1.0]

        assert scheduler.advance(0.5) == 0
        await engine.force_sync()
        assert len(record_store.calls) == 1

        assert scheduler.advance(0.5) == 1
        await engine.join()
        assert len(record_store.calls) == 2
        assert engine.get_status().pending_operations == 0

    @pytest.mark.asyncio
    async def test_backoff_doubles_per_retry(
        self, engine, record_store, scheduler, make_plan
    ):
        """Test the exponential backoff schedule."""
        record_store.failures = [
            TransportTimeoutError("timed out"),
            TransportTimeoutError("timed out"),
        ]
        engine.enqueue(create_plan(make_plan()))
        await engine.join()
        assert scheduler.pending_timers() == [1.0]

        scheduler.advance(1.0)
        await engine.join()
        assert scheduler.pending_timers() == [3.0]

        scheduler.advance(2.0)
        await engine.join()
        assert len(record_store.calls) == 3
        assert engine.get_status().pending_operations == 0

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after_extends_backoff(
        self, engine, record_store, scheduler, make_plan
    ):
        """Test that Retry-After is a lower bound on the backoff delay."""
        record_store.failures = [RateLimitError(retry_after=30)]
        engine.enqueue(create_plan(make_plan()))
        await engine.join()

        assert scheduler.pending_timers() == [30.0]
        assert scheduler.advance(29.0) == 0
        assert scheduler.advance(1.0) == 1
        await engine.join()

        assert len(record_store.calls) == 2
        assert engine.get_status().pending_operations == 0

    @pytest.mark.asyncio
    async def test_short_retry_after_keeps_backoff(
        self, engine, record_store, scheduler, make_plan
    ):
        record_store.failures = [RateLimitError(retry_after=0)]
        engine.enqueue(create_plan(make_plan()))
        await engine.join()

        assert scheduler.pending_timers() == [1.0]

    @pytest.mark.asyncio
    async def test_delete_of_missing_record_completes(
        self, engine, record_store, scheduler
    ):
        """Test that a delete already applied in the store is not retried."""
        engine.enqueue(
            {"type": "delete", "resource": "business_plan", "payload": {"id": "gone"}}
        )
        await engine.join()

        status = engine.get_status()
        assert status.pending_operations == 0
        assert status.errors == []
        assert status.last_sync_time is not None
        assert scheduler.pending_timers() == []
        assert engine.registry.is_available(DataSourceName.RECORD_STORE) is True

    @pytest.mark.asyncio
    async def test_operation_dropped_after_max_retries(
        self, engine, record_store, scheduler, make_plan
    ):
        """Test that a persistently failing operation is dropped and reported."""
        record_store.fail_with = TransportError("HTTP 500", status=500)
        op_id = engine.enqueue(create_plan(make_plan()))

        await engine.join()
        scheduler.advance(1.0)
        await engine.join()
        scheduler.advance(2.0)
        await engine.join()

        status = engine.get_status()
        assert status.pending_operations == 0
        assert status.errors == [f"Operation {op_id} (business_plan) failed: HTTP 500"]
        assert len(record_store.calls) == 3
        assert scheduler.pending_timers() == []

        [failed] = engine.failed_operations()
        assert failed.id == op_id
        assert failed.status == OperationStatus.FAILED
        assert failed.retry_count == 3

    @pytest.mark.asyncio
    async def test_retry_failed_operations_requeues_with_fresh_attempts(
        self, engine, record_store, scheduler, make_plan
    ):
        """Test recovering dropped operations once the store is back."""
        record_store.fail_with = TransportError("HTTP 503", status=503)
        engine.enqueue(create_plan(make_plan()))
        await engine.join()
        scheduler.advance(1.0)
        await engine.join()
        scheduler.advance(2.0)
        await engine.join()
        assert len(engine.get_status().errors) == 1

        record_store.fail_with = None
        assert engine.retry_failed_operations() == 1
        await engine.join()

        status = engine.get_status()
        assert status.pending_operations == 0
        assert status.errors == []
        assert engine.failed_operations() == []
        assert len(record_store.calls) == 4

    def test_retry_failed_operations_without_failures(self, engine):
        """Test that nothing happens when no operation failed."""
        assert engine.retry_failed_operations() == 0
        assert engine.get_status().pending_operations == 0

    @pytest.mark.asyncio
    async def test_failed_operation_does_not_block_queue(
        self, engine, record_store, scheduler, make_plan
    ):
        """Test that a failing operation yields to the ones behind it."""
        record_store.failures = [TransportError("HTTP 502", status=502)]
        first = engine.enqueue(create_plan(make_plan("plan_a")))
        engine.enqueue(create_plan(make_plan("plan_b")))

        await engine.join()
        assert dispatched_ids(record_store) == ["plan_a", "plan_b"]
        assert [op.id for op in engine.pending()] == [first]

        scheduler.advance(1.0)
        await engine.join()
        assert dispatched_ids(record_store) == ["plan_a", "plan_b", "plan_a"]
        assert engine.get_status().pending_operations == 0

    @pytest.mark.asyncio
    async def test_retried_operation_moves_to_queue_tail(
        self, engine, network, record_store, scheduler, make_plan
    ):
        """Test that a retry lines up behind operations queued meanwhile."""
        record_store.failures = [TransportError("HTTP 502", status=502)]
        first = engine.enqueue(create_plan(make_plan("plan_a")))
        await engine.join()

        network.set_online(False)
        second = engine.enqueue(create_plan(make_plan("plan_b")))
        scheduler.advance(1.0)
        assert [op.id for op in engine.pending()] == [second, first]

        network.set_online(True)
        await engine.join()
        assert dispatched_ids(record_store) == ["plan_a", "plan_b", "plan_a"]

    @pytest.mark.asyncio
    async def test_invalid_payload_is_dropped_after_retries(
        self, engine, validator, scheduler, make_profile
    ):
        """Test that a payload repair cannot fix ends up in the errors."""
        op_id = engine.enqueue(
            {
                "type": "update",
                "resource": "user_profile",
                "payload": make_profile("user_9", email="not-an-email"),
            }
        )
        await engine.join()
        scheduler.advance(1.0)
        await engine.join()
        scheduler.advance(2.0)
        await engine.join()

        [error] = engine.get_status().errors
        assert op_id in error
        assert "Invalid email address" in error
        assert validator.repair_attempts("user_profile", "user_9") == 3

    @pytest.mark.asyncio
    async def test_errors_are_bounded(
        self, writer, network, scheduler, clock, record_store, make_plan
    ):
        """Test that only the most recent errors are kept."""
        engine = SyncEngine(
            writer,
            config=SyncConfig(max_retries=1, max_errors=2),
            network=network,
            scheduler=scheduler,
            clock=clock,
        )
        record_store.fail_with = TransportError("HTTP 500", status=500)
        ids = [engine.enqueue(create_plan(make_plan(f"plan_{i}"))) for i in range(3)]
        await engine.join()

        errors = engine.get_status().errors
        assert len(errors) == 2
        assert ids[0] not in errors[0]
        assert ids[2] in errors[1]


class TestStatus:
    """Test cases for status snapshots and notifications."""

    @pytest.mark.asyncio
    async def test_pending_count_matches_queue_on_every_notification(
        self, engine, record_store, scheduler, make_plan
    ):
        """Test that every published status agrees with the queue length."""
        observed = []
        engine.on_status_change(
            lambda status: observed.append(
                (status.pending_operations, len(engine.pending()))
            )
        )
        record_store.failures = [TransportError("flaky")]
        engine.enqueue(create_plan(make_plan("plan_a")))
        engine.enqueue(create_plan(make_plan("plan_b")))
        await engine.join()
        scheduler.advance(1.0)
        await engine.join()

        assert observed
        assert all(published == actual for published, actual in observed)
        assert observed[-1] == (0, 0)

    @pytest.mark.asyncio
    async def test_syncing_flag_published_during_dispatch(
        self, engine, make_plan
    ):
        """Test that subscribers see is_syncing rise and fall."""
        flags = []
        engine.on_status_change(lambda status: flags.append(status.is_syncing))
        engine.enqueue(create_plan(make_plan()))

        await engine.force_sync()

        assert True in flags
        assert flags[-1] is False

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_sync(
        self, engine, record_store, make_plan
    ):
        """Test that a raising subscriber is isolated from the engine."""

        def broken(status):
            raise RuntimeError("listener bug")

        received = []
        engine.on_status_change(broken)
        engine.on_status_change(received.append)
        engine.enqueue(create_plan(make_plan()))

        await engine.force_sync()

        assert len(record_store.calls) == 1
        assert received[-1].pending_operations == 0

    def test_unsubscribe_stops_notifications(self, engine, make_plan):
        """Test removing a status listener."""
        received = []
        unsubscribe = engine.on_status_change(received.append)
        unsubscribe()

        engine.enqueue(create_plan(make_plan()))

        assert received == []

    def test_get_status_returns_snapshot(self, engine):
        """Test that callers cannot mutate engine state through a snapshot."""
        status = engine.get_status()
        status.errors.append("tampered")
        status.pending_operations = 42

        fresh = engine.get_status()
        assert fresh.errors == []
        assert fresh.pending_operations == 0

    @pytest.mark.asyncio
    async def test_clear_errors_notifies(
        self, writer, network, scheduler, clock, record_store, make_plan
    ):
        """Test clearing the error list."""
        engine = SyncEngine(
            writer,
            config=SyncConfig(max_retries=1),
            network=network,
            scheduler=scheduler,
            clock=clock,
        )
        record_store.fail_with = TransportError("HTTP 500", status=500)
        engine.enqueue(create_plan(make_plan()))
        await engine.join()
        assert engine.get_status().errors

        received = []
        engine.on_status_change(received.append)
        engine.clear_errors()

        assert engine.get_status().errors == []
        assert received[-1].errors == []


class TestNetwork:
    """Test cases for network gating."""

    @pytest.mark.asyncio
    async def test_no_dispatch_while_offline(self, engine, network, record_store, make_plan):
        """Test that nothing is dispatched while offline."""
        network.set_online(False)
        for index in range(3):
            engine.enqueue(create_plan(make_plan(f"plan_{index}")))

        await engine.force_sync()
        await asyncio.sleep(0)

        assert record_store.calls == []
        status = engine.get_status()
        assert status.is_online is False
        assert status.pending_operations == 3

    @pytest.mark.asyncio
    async def test_reconnect_drains_without_new_enqueue(
        self, engine, network, record_store, make_plan
    ):
        """Test that going online drains the backlog."""
        network.set_online(False)
        engine.enqueue(create_plan(make_plan("plan_a")))
        engine.enqueue(create_plan(make_plan("plan_b")))

        network.set_online(True)
        await engine.join()

        assert dispatched_ids(record_store) == ["plan_a", "plan_b"]
        status = engine.get_status()
        assert status.is_online is True
        assert status.pending_operations == 0

    @pytest.mark.asyncio
    async def test_going_offline_lets_in_flight_operation_finish(
        self, engine, network, record_store, make_plan, wait_until
    ):
        """Test that going offline stops the drain after the current operation."""
        record_store.gate = asyncio.Event()
        engine.enqueue(create_plan(make_plan("plan_a")))
        engine.enqueue(create_plan(make_plan("plan_b")))
        await wait_until(lambda: record_store.in_flight == 1)

        network.set_online(False)
        record_store.gate.set()
        await engine.join()

        assert dispatched_ids(record_store) == ["plan_a"]
        [remaining] = engine.pending()
        assert remaining.payload["id"] == "plan_b"
        assert remaining.status == OperationStatus.PENDING


class TestDestinations:
    """Test cases for collaborator failures seen through the engine."""

    @pytest.mark.asyncio
    async def test_mirror_failure_does_not_fail_operation(
        self, engine, mirror, registry, make_plan
    ):
        """Test that a mirror outage is recorded but not retried."""
        mirror.fail_with = MirrorError("mirror down")
        engine.enqueue(create_plan(make_plan()))

        await engine.force_sync()

        status = engine.get_status()
        assert status.pending_operations == 0
        assert status.errors == []
        record = registry.get(DataSourceName.MIRROR)
        assert record.available is False
        assert record.error_count == 1

    @pytest.mark.asyncio
    async def test_local_only_mode_succeeds_without_retry(
        self, validator, local_cache, network, scheduler, clock, make_plan
    ):
        """Test that an unconfigured record store is not treated as an outage."""
        registry = DataSourceRegistry(clock=clock)
        registry.register(DataSourceName.RECORD_STORE, available=False)
        registry.register(DataSourceName.LOCAL_CACHE)
        writer = MultiDestinationWriter(
            registry, validator, local_cache=local_cache, clock=clock
        )
        engine = SyncEngine(writer, network=network, scheduler=scheduler, clock=clock)

        engine.enqueue(create_plan(make_plan("plan_local")))
        await engine.force_sync()

        status = engine.get_status()
        assert status.pending_operations == 0
        assert status.errors == []
        assert scheduler.pending_timers() == []
        assert local_cache.get("business_plan:plan_local")["title"] == (
            "Acme Coffee Roasters"
        )
        assert registry.is_available(DataSourceName.RECORD_STORE) is False

    @pytest.mark.asyncio
    async def test_read_delegates_to_writer(self, engine, record_store, make_plan):
        """Test reading an entity through the engine."""
        record_store.seed("Business Plans", make_plan("plan_r"))

        entity = await engine.read("business_plan", "plan_r")

        assert entity["id"] == "plan_r"


class TestLifecycle:
    """Test cases for start/stop and the periodic tick."""

    @pytest.mark.asyncio
    async def test_start_arms_periodic_tick(self, engine, scheduler):
        """Test that the tick re-arms itself every sync interval."""
        await engine.start()
        assert scheduler.pending_timers() == [5.0]

        scheduler.advance(5.0)
        assert scheduler.pending_timers() == [10.0]

        await engine.stop()
        assert scheduler.pending_timers() == []

    @pytest.mark.asyncio
    async def test_stop_cancels_backoff_and_keeps_operation(
        self, engine, record_store, scheduler, make_plan
    ):
        """Test that stopping keeps waiting operations queued and ready."""
        await engine.start()
        record_store.failures = [TransportError("HTTP 502", status=502)]
        engine.enqueue(create_plan(make_plan()))
        await engine.join()
        assert scheduler.pending_timers() == [1.0, 5.0]

        await engine.stop()

        assert scheduler.pending_timers() == []
        [operation] = engine.pending()
        assert operation.next_attempt_at is None
        assert operation.is_ready

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_operation(
        self, engine, record_store, make_plan, wait_until
    ):
        """Test that stop returns only after the current dispatch settles."""
        record_store.gate = asyncio.Event()
        await engine.start()
        engine.enqueue(create_plan(make_plan()))
        await wait_until(lambda: record_store.in_flight == 1)

        stopping = asyncio.create_task(engine.stop())
        await asyncio.sleep(0)
        assert not stopping.done()

        record_store.gate.set()
        await stopping
        assert engine.get_status().pending_operations == 0

    @pytest.mark.asyncio
    async def test_stopped_engine_ignores_network_changes(
        self, engine, network, record_store, make_plan
    ):
        """Test that stop removes the network subscription."""
        await engine.start()
        await engine.stop()

        network.set_online(False)
        assert engine.get_status().is_online is True

        await engine.start()
        assert engine.get_status().is_online is False
        await engine.stop()
