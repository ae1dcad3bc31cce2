# SPDX-License-Identifier: MIT
"""Availability registry for the engine's external collaborators."""

from collections.abc import Callable
from datetime import datetime

from .constants import DEFAULT_ERROR_COUNT_THRESHOLD
from .enums import DataSourceName
from .logging_config import get_detail_logger, get_status_logger
from .models import DataSourceRecord, HealthReport
from .scheduler import utc_now


detail_logger = get_detail_logger()
status_logger = get_status_logger()

DISPLAY_NAMES: dict[str, str] = {
    DataSourceName.RECORD_STORE.value: "Record Store",
    DataSourceName.MIRROR.value: "Collaborative Mirror",
    DataSourceName.LOCAL_CACHE.value: "Local Cache",
}


def _source_key(name: DataSourceName | str) -> str:
    return name.value if isinstance(name, DataSourceName) else str(name)


class DataSourceRegistry:
    """Tracks availability and consecutive error counts per data source.

    Records are registered once when the engine is wired up and are never
    removed. Writers report every attempt through ``update_status``.
    """

    def __init__(
        self,
        error_count_threshold: int = DEFAULT_ERROR_COUNT_THRESHOLD,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.error_count_threshold = error_count_threshold
        self._clock = clock
        self._sources: dict[str, DataSourceRecord] = {}

    def register(
        self,
        name: DataSourceName | str,
        available: bool = True,
        display_name: str | None = None,
    ) -> DataSourceRecord:
        """Register a data source.

        Args:
            name: Registry key of the data source
            available: Initial availability (False for unconfigured collaborators)
            display_name: Human-readable name; defaults to a known label

        Returns:
            The registered record
        """
        key = _source_key(name)
        record = DataSourceRecord(
            name=key,
            display_name=display_name or DISPLAY_NAMES.get(key, key),
            available=available,
            last_checked=self._clock(),
            error_count=0,
        )
        self._sources[key] = record
        detail_logger.debug(
            f"Registered data source '{key}' (available={available})"
        )
        return record

    def update_status(
        self,
        name: DataSourceName | str,
        available: bool,
        error: BaseException | str | None = None,
    ) -> None:
        """Record the outcome of an attempt against a data source.

        A failure increments the error count; a success resets it to 0.

        Args:
            name: Registry key of the data source
            available: Whether the source answered
            error: Failure of the attempt, if any
        """
        key = _source_key(name)
        record = self._sources.get(key)
        if record is None:
            detail_logger.warning(f"Status update for unknown data source '{key}'")
            return

        was_available = record.available
        record.available = available
        record.last_checked = self._clock()
        if error is not None:
            record.error_count += 1
            record.last_error = str(error)
        else:
            record.error_count = 0
            record.last_error = None

        detail_logger.debug(
            f"Data source '{key}': available={available}, "
            f"error_count={record.error_count}"
        )
        if was_available and not available:
            status_logger.warning(f"{record.display_name} became unavailable: {error}")
        elif available and not was_available:
            status_logger.info(f"{record.display_name} is available again")

    def get(self, name: DataSourceName | str) -> DataSourceRecord | None:
        """Get a copy of one record."""
        key = _source_key(name)
        record = self._sources.get(key)
        return record.model_copy() if record else None

    def is_available(self, name: DataSourceName | str) -> bool:
        """Whether the last attempt against a source succeeded."""
        record = self.get(name)
        return bool(record and record.available)

    def get_status(self) -> list[DataSourceRecord]:
        """Get copies of all records in registration order."""
        return [record.model_copy() for record in self._sources.values()]

    def get_available_sources(self) -> list[str]:
        """Names of the sources currently marked available."""
        return [name for name, record in self._sources.items() if record.available]

    def health_check(self) -> HealthReport:
        """Flag unavailable sources and sources with a high error count.

        Returns:
            HealthReport, healthy only when no issue was found
        """
        issues: list[str] = []
        for record in self._sources.values():
            if not record.available:
                issues.append(f"{record.display_name} is unavailable")
            if record.error_count > self.error_count_threshold:
                issues.append(
                    f"{record.display_name} has high error count: {record.error_count}"
                )

        return HealthReport(healthy=not issues, issues=issues)
