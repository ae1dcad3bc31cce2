# SPDX-License-Identifier: MIT
"""Charter-Sync - Reliable multi-destination sync for business plans."""

from importlib.metadata import PackageNotFoundError, version

from .engine import SyncEngine
from .factory import create_sync_engine
from .models import OperationRequest, SyncOperation, SyncStatus


__all__: list[str] = [
    "OperationRequest",
    "SyncEngine",
    "SyncOperation",
    "SyncStatus",
    "create_sync_engine",
    "__version__",
]

# Get version from installed package metadata
__version__: str
try:
    __version__ = version("charter-sync")
except PackageNotFoundError:
    # Package is not installed, use development fallback
    __version__ = "development"
