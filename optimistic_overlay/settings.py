"""Engine configuration: defaults, JSON settings file and environment overrides."""
from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

LOGGER = logging.getLogger(__name__)

SETTINGS_PATH_ENV_VAR = "OPTIMISTIC_OVERLAY_SETTINGS_PATH"
ENV_PREFIX = "OPTIMISTIC_OVERLAY_"

DEFAULT_RECONCILIATION_SCHEDULE: Tuple[float, ...] = (0.0, 10.0, 30.0, 60.0, 120.0, 300.0)


@dataclass(frozen=True)
class EngineSettings:
    drain_interval: float = 20.0
    reconciliation_schedule: Tuple[float, ...] = DEFAULT_RECONCILIATION_SCHEDULE
    gc_interval: float = 10.0
    pending_ttl: float = 120.0
    settled_ttl: float = 900.0
    queue_max_age: float = 900.0
    dedup_window: float = 3.0
    suppression_seconds: float = 3.0
    settle_seconds: float = 1.0
    update_guard_seconds: float = 30.0
    queue_path: Optional[Path] = None
    persist_debounce: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reconciliation_schedule"] = list(self.reconciliation_schedule)
        data["queue_path"] = str(self.queue_path) if self.queue_path is not None else None
        return data


def coerce_bool_token(value: Any) -> Optional[bool]:
    """Parse loose boolean tokens, returning None when the value is unrecognised."""

    if isinstance(value, bool):
        return value
    if value is None:
        return None
    token = str(value).strip().lower()
    if token in {"1", "true", "yes", "on"}:
        return True
    if token in {"0", "false", "no", "off"}:
        return False
    return None


def _coerce_positive_float(value: Any, fallback: float, *, minimum: float = 0.05) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(numeric) or numeric < minimum:
        return fallback
    return numeric


def _coerce_schedule(value: Any, fallback: Tuple[float, ...]) -> Tuple[float, ...]:
    if isinstance(value, str):
        value = [part for part in value.replace(";", ",").split(",") if part.strip()]
    if not isinstance(value, (list, tuple)) or not value:
        return fallback
    offsets: list[float] = []
    for item in value:
        try:
            offset = float(item)
        except (TypeError, ValueError):
            return fallback
        if not math.isfinite(offset) or offset < 0.0:
            return fallback
        if offsets and offset < offsets[-1]:
            LOGGER.warning("Reconciliation schedule %s is not non-decreasing; using defaults", value)
            return fallback
        offsets.append(offset)
    return tuple(offsets)


def _coerce_path(value: Any, fallback: Optional[Path]) -> Optional[Path]:
    if value is None:
        return fallback
    text = str(value).strip()
    if not text:
        return None
    return Path(text).expanduser()


def clamp_queue_max_age(settings: EngineSettings) -> EngineSettings:
    """Keep ``queue_max_age`` long enough for the final scheduled attempt to run.

    The last attempt is due at ``reconciliation_schedule[-1]`` and may wait up to
    one ``drain_interval`` for the next drain.
    """

    floor = settings.reconciliation_schedule[-1] + settings.drain_interval
    if settings.queue_max_age >= floor:
        return settings
    LOGGER.warning(
        "queue_max_age %.1fs is shorter than the reconciliation schedule; raising it to %.1fs",
        settings.queue_max_age,
        floor,
    )
    return replace(settings, queue_max_age=floor)


def parse_engine_settings(raw: Any, defaults: Optional[EngineSettings] = None) -> EngineSettings:
    """Build settings from a loosely typed mapping, keeping defaults for invalid values."""

    base = defaults or EngineSettings()
    if not isinstance(raw, Mapping):
        return base

    def _float(name: str, *, minimum: float = 0.05) -> float:
        return _coerce_positive_float(raw.get(name), getattr(base, name), minimum=minimum)

    parsed = replace(
        base,
        drain_interval=_float("drain_interval"),
        reconciliation_schedule=_coerce_schedule(raw.get("reconciliation_schedule"), base.reconciliation_schedule),
        gc_interval=_float("gc_interval"),
        pending_ttl=_float("pending_ttl"),
        settled_ttl=_float("settled_ttl"),
        queue_max_age=_float("queue_max_age"),
        dedup_window=_float("dedup_window", minimum=0.0),
        suppression_seconds=_float("suppression_seconds"),
        settle_seconds=_float("settle_seconds", minimum=0.0),
        update_guard_seconds=_float("update_guard_seconds"),
        queue_path=_coerce_path(raw.get("queue_path"), base.queue_path),
        persist_debounce=_float("persist_debounce"),
    )
    return clamp_queue_max_age(parsed)


def _environment_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for name in EngineSettings.__dataclass_fields__:
        value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value is not None:
            overrides[name] = value
    return overrides


def load_engine_settings(
    path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineSettings:
    """Load settings from a JSON file, then apply ``OPTIMISTIC_OVERLAY_*`` overrides."""

    env = os.environ if environ is None else environ
    settings = EngineSettings()
    source = path
    if source is None and env.get(SETTINGS_PATH_ENV_VAR):
        source = Path(env[SETTINGS_PATH_ENV_VAR]).expanduser()
    if source is not None:
        try:
            data = json.loads(Path(source).read_text(encoding="utf-8"))
        except FileNotFoundError:
            LOGGER.debug("Settings file %s not found; using defaults", source)
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Failed to read settings file %s: %s", source, exc)
        else:
            settings = parse_engine_settings(data, settings)
    overrides = _environment_overrides(env)
    if overrides:
        settings = parse_engine_settings(overrides, settings)
    return settings

