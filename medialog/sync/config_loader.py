"""Load, validate, and hot-reload the sync engine tuning.

The config lives in ``sync_config.yaml`` alongside this module.  It is
loaded once and cached; call ``reload_sync_config()`` to re-read it without
restarting the client.

Usage::

    from medialog.sync.config_loader import get_sync_config

    config = get_sync_config()
    config.polling.interval_seconds     # 60
    config.credentials.expiry_buffer_seconds  # 30
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from medialog.models.entries import ListType

logger = logging.getLogger("medialog.sync.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class PollingConfig:
    """Background pull settings."""

    interval_seconds: float
    foreground_only: bool
    partitions: list[ListType]


@dataclass
class CredentialConfig:
    """Access-token expiry bookkeeping."""

    expiry_buffer_seconds: int
    default_access_ttl_seconds: int


@dataclass
class BackupConfig:
    """Backup snapshot settings."""

    filename: str
    description: str
    snapshot_version: str


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:     Config schema version string.
        polling:     Background pull cadence and partitions.
        credentials: Token expiry settings.
        backup:      Backup object naming and snapshot version.
    """

    version: str
    polling: PollingConfig
    credentials: CredentialConfig
    backup: BackupConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigValidationError(f"{path} must contain a mapping at the top level")
    return data


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Collects every problem before failing so one edit can fix them all.

    Raises:
        ConfigValidationError: If fields are missing or invalid.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, name: str, default: Any, minimum: float) -> Any:
        value = section.get(key, default)
        try:
            number = type(default)(value)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be a number, got {value!r}")
            return default
        if number < minimum:
            errors.append(f"{name}.{key} = {number} must be >= {minimum}")
        return number

    version = str(raw.get("version", "1.0"))

    # ── Polling ──
    polling_raw = raw.get("polling") or {}
    partitions: list[ListType] = []
    for name in polling_raw.get("partitions", [p.value for p in ListType]):
        try:
            partitions.append(ListType(name))
        except ValueError:
            errors.append(
                f"polling.partitions: unknown partition {name!r} "
                f"(expected one of {[p.value for p in ListType]})"
            )
    if not partitions and not errors:
        errors.append("polling.partitions must list at least one partition")
    polling = PollingConfig(
        interval_seconds=_number(polling_raw, "interval_seconds", "polling", 60.0, 1),
        foreground_only=bool(polling_raw.get("foreground_only", True)),
        partitions=partitions,
    )

    # ── Credentials ──
    cred_raw = raw.get("credentials") or {}
    credentials = CredentialConfig(
        expiry_buffer_seconds=_number(cred_raw, "expiry_buffer_seconds", "credentials", 30, 0),
        default_access_ttl_seconds=_number(
            cred_raw, "default_access_ttl_seconds", "credentials", 900, 1
        ),
    )

    # ── Backup ──
    backup_raw = raw.get("backup") or {}
    filename = str(backup_raw.get("filename", "media-logback-data.json"))
    if not filename.strip():
        errors.append("backup.filename must not be empty")
    backup = BackupConfig(
        filename=filename,
        description=str(backup_raw.get("description", "Media Logbook Sync Data")),
        snapshot_version=str(backup_raw.get("snapshot_version", "1.0")),
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        polling=polling,
        credentials=credentials,
        backup=backup,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.

    Returns:
        Validated SyncConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
