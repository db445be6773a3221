"""Load, validate, and hot-reload the wearsync sync rules.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an update without a restart.

Usage::

    from wearsync.wearables.config_loader import get_sync_config

    config = get_sync_config()
    config.sync.batch_size             # 100
    config.fallback_for("sleep_hours") # 7
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger("wearsync.wearables.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class RunConfig:
    """Per-run sizing and pacing."""

    default_days: int
    max_days: int
    batch_size: int
    min_interval_seconds: int


@dataclass
class ThresholdConfig:
    """Sanity thresholds applied during value extraction."""

    calorie_sanity_kcal: float
    calorie_mismatch_divisor: float


@dataclass
class VitalsConfig:
    resting_hr_fallback_hours: int


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:       Config schema version string.
        sync:          Run sizing (default days, batch size, debounce).
        fallback_days: Canonical metric label -> extended lookback in days.
        thresholds:    Extraction sanity thresholds.
        vitals:        Vitals derivation settings.
    """

    version: str
    sync: RunConfig
    fallback_days: dict[str, int]
    thresholds: ThresholdConfig
    vitals: VitalsConfig
    _raw: dict = field(default_factory=dict, repr=False)

    def fallback_for(self, metric: str) -> int | None:
        """Return the extended lookback for a metric, or None if it has none."""
        return self.fallback_days.get(metric)


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
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _positive_int(
    value: object, name: str, errors: list[str], allow_zero: bool = False
) -> int:
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        errors.append(f"{name} must be an integer, got {value!r}")
        return 0
    if allow_zero and number < 0:
        errors.append(f"{name} = {number} must not be negative")
    elif not allow_zero and number <= 0:
        errors.append(f"{name} = {number} must be positive")
    return number


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Raises:
        ConfigValidationError: If any field is missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Run sizing ──
    run_raw = raw.get("sync", {}) or {}
    run = RunConfig(
        default_days=_positive_int(run_raw.get("default_days", 7), "sync.default_days", errors),
        max_days=_positive_int(run_raw.get("max_days", 90), "sync.max_days", errors),
        batch_size=_positive_int(run_raw.get("batch_size", 100), "sync.batch_size", errors),
        min_interval_seconds=_positive_int(
            run_raw.get("min_interval_seconds", 30),
            "sync.min_interval_seconds",
            errors,
            allow_zero=True,
        ),
    )
    if run.default_days > run.max_days:
        errors.append(
            f"sync.default_days ({run.default_days}) exceeds sync.max_days ({run.max_days})"
        )

    # ── Fallback windows ──
    fallback_days: dict[str, int] = {}
    fb_raw = raw.get("fallback_days", {})
    if not isinstance(fb_raw, dict):
        errors.append("fallback_days must be a mapping of metric→days")
        fb_raw = {}
    for metric, days in fb_raw.items():
        fallback_days[metric] = _positive_int(days, f"fallback_days.{metric}", errors)

    # ── Thresholds ──
    th_raw = raw.get("thresholds", {}) or {}
    try:
        thresholds = ThresholdConfig(
            calorie_sanity_kcal=float(th_raw.get("calorie_sanity_kcal", 10000)),
            calorie_mismatch_divisor=float(th_raw.get("calorie_mismatch_divisor", 1000)),
        )
    except (TypeError, ValueError) as exc:
        errors.append(f"thresholds must be numbers: {exc}")
        thresholds = ThresholdConfig(10000.0, 1000.0)
    if thresholds.calorie_mismatch_divisor <= 0:
        errors.append("thresholds.calorie_mismatch_divisor must be positive")

    # ── Vitals ──
    vt_raw = raw.get("vitals", {}) or {}
    vitals = VitalsConfig(
        resting_hr_fallback_hours=_positive_int(
            vt_raw.get("resting_hr_fallback_hours", 24),
            "vitals.resting_hr_fallback_hours",
            errors,
        ),
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        sync=run,
        fallback_days=fallback_days,
        thresholds=thresholds,
        vitals=vitals,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
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

    If validation fails, the old config is retained and the error is re-raised.

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
