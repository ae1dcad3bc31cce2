# SPDX-License-Identifier: MIT
"""Wiring of a ready-to-run sync engine from configuration."""

from .clients import (
    AirtableRecordStore,
    HttpMirrorClient,
    InMemoryLocalCache,
    LocalCache,
    MirrorClient,
    RecordStoreClient,
    SqliteLocalCache,
)
from .config import AppConfig, LocalCacheConfig, MirrorConfig, RecordStoreConfig
from .engine import SyncEngine
from .enums import DataSourceName
from .integrity import DataIntegrityValidator
from .logging_config import get_detail_logger
from .network import NetworkMonitor
from .registry import DataSourceRegistry
from .scheduler import Scheduler
from .writer import MultiDestinationWriter


detail_logger = get_detail_logger()


def build_record_store(config: RecordStoreConfig) -> AirtableRecordStore | None:
    """Record store client, or None when credentials are missing."""
    if not (config.api_key and config.base_id):
        return None
    return AirtableRecordStore(
        api_key=config.api_key,
        base_id=config.base_id,
        base_url=config.base_url,
        timeout=config.timeout,
    )


def build_mirror(config: MirrorConfig) -> HttpMirrorClient | None:
    """Mirror client, or None when disabled or missing a secret key."""
    if not (config.enabled and config.secret_key):
        return None
    return HttpMirrorClient(
        secret_key=config.secret_key,
        base_url=config.base_url,
        timeout=config.timeout,
    )


def build_local_cache(config: LocalCacheConfig) -> LocalCache:
    if config.backend == "sqlite":
        return SqliteLocalCache(config.db_path)
    return InMemoryLocalCache()


def create_sync_engine(
    config: AppConfig | None = None,
    *,
    record_store: RecordStoreClient | None = None,
    mirror: MirrorClient | None = None,
    local_cache: LocalCache | None = None,
    network: NetworkMonitor | None = None,
    scheduler: Scheduler | None = None,
) -> SyncEngine:
    """Build an engine with every collaborator registered in the registry.

    Collaborators passed explicitly take precedence over those built from
    ``config``. A missing record store puts the writer into local-only mode
    and is registered as unavailable; an unconfigured mirror is not registered
    at all.

    Args:
        config: Application configuration; defaults when omitted
        record_store: Record store client override
        mirror: Mirror client override
        local_cache: Local cache override
        network: Network monitor override
        scheduler: Timer source override (``ManualScheduler`` in tests)

    Returns:
        A stopped engine; call ``await engine.start()`` to arm its timers
    """
    config = config or AppConfig()

    if record_store is None:
        record_store = build_record_store(config.record_store)
    if mirror is None:
        mirror = build_mirror(config.mirror)
    if local_cache is None:
        local_cache = build_local_cache(config.local_cache)
    if network is None:
        network = NetworkMonitor(
            probe_url=config.network.probe_url,
            probe_timeout=config.network.probe_timeout,
        )

    registry = DataSourceRegistry(
        error_count_threshold=config.health.error_count_threshold
    )
    registry.register(DataSourceName.RECORD_STORE, available=record_store is not None)
    if mirror is not None:
        registry.register(DataSourceName.MIRROR)
    registry.register(DataSourceName.LOCAL_CACHE, available=True)

    writer = MultiDestinationWriter(
        registry=registry,
        validator=DataIntegrityValidator(
            max_repair_attempts=config.integrity.max_repair_attempts
        ),
        record_store=record_store,
        mirror=mirror,
        local_cache=local_cache,
        tables=config.record_store.tables,
    )
    detail_logger.debug(
        f"Sync engine wired (record_store={record_store is not None}, "
        f"mirror={mirror is not None}, cache={type(local_cache).__name__})"
    )
    return SyncEngine(
        writer,
        config=config.sync,
        network=network,
        scheduler=scheduler,
    )
