# SPDX-License-Identifier: MIT
"""Core data models for the sync engine."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import OperationStatus, OperationType, ResourceType


class OperationRequest(BaseModel):
    """Operation as submitted by a caller, before it is queued."""

    type: OperationType = Field(..., description="create, update or delete")
    resource: ResourceType = Field(..., description="Entity kind the change targets")
    payload: dict[str, Any] = Field(
        default_factory=dict, description="Entity data for the change"
    )


class SyncOperation(BaseModel):
    """A queued intent to change one entity in the backend stores."""

    id: str = Field(..., description="Unique operation id assigned at enqueue time")
    type: OperationType = Field(..., description="create, update or delete")
    resource: ResourceType = Field(..., description="Entity kind the change targets")
    payload: dict[str, Any] = Field(
        default_factory=dict, description="Entity data for the change"
    )
    enqueued_at: datetime = Field(..., description="When the operation was queued")
    retry_count: int = Field(0, ge=0, description="Failed attempts so far")
    status: OperationStatus = Field(
        OperationStatus.PENDING, description="Lifecycle status"
    )
    last_error: str | None = Field(None, description="Reason of the last failure")
    next_attempt_at: float | None = Field(
        None, description="Scheduler time the backoff delay ends, if backing off"
    )

    @property
    def is_ready(self) -> bool:
        """True when the operation may be dispatched now."""
        return (
            self.status == OperationStatus.PENDING and self.next_attempt_at is None
        )


class SyncStatus(BaseModel):
    """Derived sync state published to subscribers."""

    is_online: bool = Field(True, description="Network gate for dispatching")
    is_syncing: bool = Field(False, description="An operation is in flight")
    pending_operations: int = Field(0, ge=0, description="Queue length")
    last_sync_time: datetime | None = Field(
        None, description="When the last operation completed"
    )
    errors: list[str] = Field(
        default_factory=list, description="Failures of dropped operations"
    )


class DataSourceRecord(BaseModel):
    """Availability bookkeeping for one external collaborator."""

    name: str = Field(..., description="Registry key")
    display_name: str = Field(..., description="Human-readable name")
    available: bool = Field(True, description="Result of the last attempt")
    last_checked: datetime = Field(..., description="When the last attempt ended")
    error_count: int = Field(
        0, ge=0, description="Consecutive failures since the last success"
    )
    last_error: str | None = Field(None, description="Message of the last failure")


class ValidationResult(BaseModel):
    """Outcome of checking a payload against its schema and invariants."""

    is_valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class RepairResult(BaseModel):
    """Outcome of a best-effort payload repair."""

    repaired: dict[str, Any] = Field(default_factory=dict)
    success: bool = False


class HealthReport(BaseModel):
    """Aggregated data source diagnostics."""

    healthy: bool = True
    issues: list[str] = Field(default_factory=list)
