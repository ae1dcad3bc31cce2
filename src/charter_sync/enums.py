# SPDX-License-Identifier: MIT
"""Enums for the sync engine."""

from enum import Enum


class OperationType(str, Enum):
    """Kinds of change an operation carries."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResourceType(str, Enum):
    """Business entities the engine knows how to write."""

    BUSINESS_PLAN = "business_plan"
    SECTION = "section"
    USER_PROFILE = "user_profile"


class OperationStatus(str, Enum):
    """Lifecycle of a queued operation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStatus(str, Enum):
    """Editorial status of a business plan."""

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class DataSourceName(str, Enum):
    """External collaborators tracked by the data source registry."""

    RECORD_STORE = "record_store"  # Authoritative durable store
    MIRROR = "mirror"  # Real-time collaborative storage, best effort
    LOCAL_CACHE = "local_cache"  # Offline read path
