# SPDX-License-Identifier: MIT
"""Configuration management for the sync engine."""

import copy
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_BASE_DELAY_SECONDS,
    DEFAULT_ERROR_COUNT_THRESHOLD,
    DEFAULT_MAX_DELAY_SECONDS,
    DEFAULT_MAX_FAILED_OPERATIONS,
    DEFAULT_MAX_REPAIR_ATTEMPTS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_STATUS_ERRORS,
    DEFAULT_MIRROR_TIMEOUT,
    DEFAULT_MIRROR_URL,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_RECORD_STORE_TIMEOUT,
    DEFAULT_RECORD_STORE_URL,
    DEFAULT_SYNC_INTERVAL_SECONDS,
    DEFAULT_TABLES,
)


ENV_PREFIX = "CHARTER_SYNC_"


class SyncConfig(BaseModel):
    """Configuration for the queue processor."""

    max_retries: int = Field(
        DEFAULT_MAX_RETRIES, ge=1, description="Attempts before an operation fails"
    )
    base_delay_seconds: float = Field(
        DEFAULT_BASE_DELAY_SECONDS, ge=0.0, description="Backoff delay after attempt 1"
    )
    max_delay_seconds: float = Field(
        DEFAULT_MAX_DELAY_SECONDS, ge=0.0, description="Upper bound for backoff delay"
    )
    sync_interval_seconds: float = Field(
        DEFAULT_SYNC_INTERVAL_SECONDS,
        gt=0.0,
        description="Periodic drain interval while running",
    )
    max_errors: int = Field(
        DEFAULT_MAX_STATUS_ERRORS, ge=1, description="Error entries kept in status"
    )
    max_failed_operations: int = Field(
        DEFAULT_MAX_FAILED_OPERATIONS,
        ge=1,
        description="Failed operations kept for retry_failed_operations",
    )


class IntegrityConfig(BaseModel):
    """Configuration for payload validation and repair."""

    max_repair_attempts: int = Field(
        DEFAULT_MAX_REPAIR_ATTEMPTS, ge=0, description="Repairs allowed per entity"
    )


class RecordStoreConfig(BaseModel):
    """Connection settings for the durable record store."""

    api_key: str | None = Field(None, description="Record store API key")
    base_id: str | None = Field(None, description="Record store base identifier")
    base_url: str = Field(DEFAULT_RECORD_STORE_URL, description="API root URL")
    timeout: int = Field(DEFAULT_RECORD_STORE_TIMEOUT, ge=1, description="Seconds")
    tables: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_TABLES),
        description="Table name per resource type",
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.base_id)


class MirrorConfig(BaseModel):
    """Connection settings for the collaborative mirror."""

    enabled: bool = Field(True, description="Mirror writes into collaborative rooms")
    base_url: str = Field(DEFAULT_MIRROR_URL, description="API root URL")
    secret_key: str | None = Field(None, description="Mirror secret key")
    timeout: int = Field(DEFAULT_MIRROR_TIMEOUT, ge=1, description="Seconds")

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.secret_key)


class LocalCacheConfig(BaseModel):
    """Configuration for the local/offline cache."""

    backend: Literal["memory", "sqlite"] = Field(
        "memory", description="Cache backend: memory, sqlite"
    )
    db_path: Path = Field(
        Path(".charter-sync") / "cache.db", description="SQLite database path"
    )


class NetworkConfig(BaseModel):
    """Configuration for connectivity probing."""

    probe_url: str | None = Field(
        None, description="URL probed by the health check (no probe when unset)"
    )
    probe_timeout: int = Field(DEFAULT_PROBE_TIMEOUT, ge=1, description="Seconds")


class HealthConfig(BaseModel):
    """Configuration for the data source health check."""

    error_count_threshold: int = Field(
        DEFAULT_ERROR_COUNT_THRESHOLD,
        ge=0,
        description="Report a source once its error count exceeds this",
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    sync: SyncConfig = SyncConfig()
    integrity: IntegrityConfig = IntegrityConfig()
    record_store: RecordStoreConfig = RecordStoreConfig()
    mirror: MirrorConfig = MirrorConfig()
    local_cache: LocalCacheConfig = LocalCacheConfig()
    network: NetworkConfig = NetworkConfig()
    health: HealthConfig = HealthConfig()


class ConfigManager:
    """Manages application configuration from files and environment."""

    def __init__(self, config_path: Path | None = None):
        self.config_path = config_path or self._find_config_file()
        self._config: AppConfig | None = None

    def _find_config_file(self) -> Path | None:
        """Find configuration file in standard locations."""
        search_paths = [
            Path.cwd() / ".charter-sync" / "config.yaml",
            Path.cwd() / "config" / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "charter-sync" / "config.yaml",
            Path("/etc/charter-sync/config.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def load_config(self) -> AppConfig:
        """Load configuration from file or create default."""
        if self._config is not None:
            return self._config

        default_config = self.get_default_config()

        if self.config_path and self.config_path.exists():
            with open(self.config_path, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
            config_data = self._deep_merge_configs(default_config, file_config)
        else:
            config_data = default_config

        config_data = self._apply_env_overrides(config_data)

        self._config = AppConfig(**config_data)
        return self._config

    def _deep_merge_configs(
        self, default_config: dict[str, Any], override_config: dict[str, Any]
    ) -> dict[str, Any]:
        """Deep merge override config into default config.

        Nested sections merge key by key at every level, so a file that only
        sets ``record_store.tables.user_profile`` keeps the default table for
        business plans.

        Example:
            Default: {"sync": {"max_retries": 3, "base_delay_seconds": 1.0}}
            Override: {"sync": {"max_retries": 5}}
            Result: {"sync": {"max_retries": 5, "base_delay_seconds": 1.0}}
        """
        result = copy.deepcopy(default_config)

        for key, value in override_config.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config_data: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variable overrides to config."""
        # Example: CHARTER_SYNC_RECORD_STORE_API_KEY=key123
        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            config_key = key[len(ENV_PREFIX) :].lower()
            for section in sorted(AppConfig.model_fields, key=len, reverse=True):
                prefix = f"{section}_"
                if not config_key.startswith(prefix):
                    continue
                field = config_key[len(prefix) :]
                section_model = AppConfig.model_fields[section].annotation
                if field in getattr(section_model, "model_fields", {}):
                    config_data.setdefault(section, {})[field] = value
                break

        return config_data

    def get_complete_config_dict(self) -> dict[str, Any]:
        """Get the complete configuration as a dictionary for display."""
        config = self.load_config()
        return config.model_dump(mode="json")

    def show_config(self) -> str:
        """Show the complete configuration in YAML format.

        Returns:
            YAML formatted configuration string
        """
        config_dict = self.get_complete_config_dict()
        return yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    def get_default_config(self) -> dict[str, Any]:
        """Get default configuration as plain data."""
        return AppConfig().model_dump(mode="json")

    def create_default_config(self, output_path: Path) -> None:
        """Create a default configuration file."""
        default_config = self.get_default_config()

        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)


# Global config manager instance with factory pattern
_config_manager_instance: ConfigManager | None = None


def get_config_manager(config_path: Path | None = None) -> ConfigManager:
    """Get or create the global config manager instance.

    Args:
        config_path: Optional path to config file (only used on first call)

    Returns:
        The global ConfigManager instance
    """
    global _config_manager_instance
    if _config_manager_instance is None:
        _config_manager_instance = ConfigManager(config_path)
    return _config_manager_instance


def set_config_manager(manager: ConfigManager) -> None:
    """Set the config manager instance (primarily for testing)."""
    global _config_manager_instance
    _config_manager_instance = manager


def reset_config_manager() -> None:
    """Reset the config manager instance (primarily for testing)."""
    global _config_manager_instance
    _config_manager_instance = None
