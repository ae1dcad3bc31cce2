# SPDX-License-Identifier: MIT
"""Constants used throughout the sync engine.

This module centralizes the defaults for:

- **Retry policy**: retry ceiling and exponential backoff parameters
- **Queue housekeeping**: periodic drain interval and bounded error history
- **Integrity**: repair attempt ceiling per entity
- **Health**: error count above which a data source is reported
- **Record store**: table names and HTTP timeouts for the durable store
"""

from .enums import ResourceType


# Retry policy
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_BASE_DELAY_SECONDS: float = 1.0
DEFAULT_MAX_DELAY_SECONDS: float = 60.0

# Queue housekeeping
DEFAULT_SYNC_INTERVAL_SECONDS: float = 5.0
DEFAULT_MAX_STATUS_ERRORS: int = 50
DEFAULT_MAX_FAILED_OPERATIONS: int = 100

# Integrity
DEFAULT_MAX_REPAIR_ATTEMPTS: int = 3
DEFAULT_PLAN_TITLE: str = "Untitled Business Plan"
DEFAULT_PROFILE_NAME: str = "Unknown User"
PLACEHOLDER_EMAIL_DOMAIN: str = "example.com"

# Health
DEFAULT_ERROR_COUNT_THRESHOLD: int = 5

# Record store
DEFAULT_RECORD_STORE_URL: str = "https://api.airtable.com/v0"
DEFAULT_RECORD_STORE_TIMEOUT: int = 10
DEFAULT_TABLES: dict[str, str] = {
    ResourceType.BUSINESS_PLAN.value: "Business Plans",
    ResourceType.USER_PROFILE.value: "User Profiles",
}

# Mirror
DEFAULT_MIRROR_URL: str = "https://api.liveblocks.io/v2"
DEFAULT_MIRROR_TIMEOUT: int = 10

# Network
DEFAULT_PROBE_TIMEOUT: int = 5
