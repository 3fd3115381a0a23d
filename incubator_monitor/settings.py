import json
import math
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, List, Optional

from incubator_monitor.constants import DURATION_UNIT_SECONDS, MAX_TIMER_SECONDS, DurationUnit
from incubator_monitor.exceptions import ValidationError
from incubator_monitor.logging import logger


DEFAULT_ALARM_ENABLED = True
DEFAULT_ALARM_DURATION = 30
DEFAULT_ALARM_DURATION_UNIT = DurationUnit.SECONDS
DEFAULT_LOW_THRESHOLD = 25.0  # °C
DEFAULT_HIGH_THRESHOLD = 65.0  # °C
DEFAULT_VIBRATE_ENABLED = True

SETTINGS_KEY = "settings"


@dataclass(frozen=True)
class Settings:
    alarm_enabled: bool = DEFAULT_ALARM_ENABLED
    alarm_duration: int = DEFAULT_ALARM_DURATION
    alarm_duration_unit: DurationUnit = DEFAULT_ALARM_DURATION_UNIT
    low_threshold: float = DEFAULT_LOW_THRESHOLD
    high_threshold: float = DEFAULT_HIGH_THRESHOLD
    vibrate_enabled: bool = DEFAULT_VIBRATE_ENABLED
    custom_alert_media_ref: Optional[str] = None
    # Session-local handle of the loaded alert media, never persisted.
    media_handle: Any = field(default=None, compare=False, repr=False, metadata={"persist": False})

    @property
    def alarm_duration_seconds(self) -> int:
        return self.alarm_duration * DURATION_UNIT_SECONDS[self.alarm_duration_unit]

    def to_dict(self) -> dict:
        """Persistable fields only."""
        result = {}
        for f in fields(self):
            if not f.metadata.get("persist", True):
                continue
            value = getattr(self, f.name)
            if isinstance(value, DurationUnit):
                value = value.value
            result[f.name] = value
        return result


def _parse_bool(value):
    if not isinstance(value, bool):
        raise ValueError(f"expected a boolean, got {value!r}")
    return value


def _parse_duration(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"expected an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"alarm duration must not be negative, got {value}")
    return value


def _parse_unit(value):
    if isinstance(value, DurationUnit):
        return value
    try:
        return DurationUnit(value)
    except ValueError:
        raise ValueError(f"unknown duration unit {value!r}") from None


def _parse_threshold(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected a number, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"threshold must be finite, got {value}")
    return value


def _parse_media_ref(value):
    if value is not None and not isinstance(value, str):
        raise ValueError(f"expected a string or null, got {value!r}")
    return value or None


_FIELD_PARSERS = {
    "alarm_enabled": _parse_bool,
    "alarm_duration": _parse_duration,
    "alarm_duration_unit": _parse_unit,
    "low_threshold": _parse_threshold,
    "high_threshold": _parse_threshold,
    "vibrate_enabled": _parse_bool,
    "custom_alert_media_ref": _parse_media_ref,
}

EDITABLE_FIELDS = tuple(_FIELD_PARSERS)


def parse_setting_text(name: str, text: str):
    """Converts user-typed text (console commands) into a typed setting value."""
    if name not in _FIELD_PARSERS:
        raise ValidationError(f"Unknown setting '{name}'")
    text = text.strip()
    lowered = text.lower()
    try:
        if name in ("alarm_enabled", "vibrate_enabled"):
            if lowered in ("1", "true", "on", "yes"):
                return True
            if lowered in ("0", "false", "off", "no"):
                return False
            raise ValueError(f"expected on/off, got {text!r}")
        if name == "alarm_duration":
            return int(text)
        if name in ("low_threshold", "high_threshold"):
            return float(text)
        if name == "alarm_duration_unit":
            return _parse_unit(lowered)
        return None if lowered in ("", "none", "-") else text
    except ValueError as e:
        raise ValidationError(f"Invalid value for '{name}': {e}") from e


def validate_settings(settings: Settings) -> Settings:
    for name, parser in _FIELD_PARSERS.items():
        try:
            parser(getattr(settings, name))
        except ValueError as e:
            raise ValidationError(f"Invalid value for '{name}': {e}") from e
    if settings.low_threshold >= settings.high_threshold:
        raise ValidationError(
            f"Low threshold ({settings.low_threshold}) must be below high threshold ({settings.high_threshold})")
    if settings.alarm_duration_seconds > MAX_TIMER_SECONDS:
        raise ValidationError(
            f"Alarm duration ({settings.alarm_duration} {settings.alarm_duration_unit.value}) "
            f"must not exceed {MAX_TIMER_SECONDS} seconds")
    return settings


class SettingsStore:
    """
    Owns the persisted configuration.

    Readers call `current` on every evaluation instead of caching it, so edits
    apply to the very next reading.
    """

    def __init__(self, kv_store):
        self._kv_store = kv_store
        self._settings = Settings()
        self._listeners: List[Callable[[Settings], None]] = []

    @property
    def current(self) -> Settings:
        return self._settings

    def add_listener(self, callback: Callable[[Settings], None]) -> None:
        self._listeners.append(callback)

    def load(self) -> Settings:
        """Merges persisted values over the defaults, field by field."""
        defaults = Settings()
        raw = self._kv_store.get(SETTINGS_KEY)
        if raw is None:
            logger.warning("No persisted settings found. Using defaults, they will be saved.")
            self._settings = defaults
            self.save(defaults)
            return defaults

        try:
            persisted = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing persisted settings: {e}. Using defaults.")
            persisted = {}
        if not isinstance(persisted, dict):
            logger.error("Persisted settings are not a JSON object. Using defaults.")
            persisted = {}

        values = {}
        settings_updated = False
        for name, parser in _FIELD_PARSERS.items():
            if name not in persisted:
                logger.warning(f"Missing setting '{name}' replaced with its default.")
                settings_updated = True
                continue
            try:
                values[name] = parser(persisted[name])
            except ValueError as e:
                logger.warning(f"Malformed setting '{name}' ({e}) replaced with its default.")
                settings_updated = True

        settings = replace(defaults, **values)
        if settings.low_threshold >= settings.high_threshold:
            logger.warning(
                f"Persisted thresholds are inconsistent (low={settings.low_threshold}, "
                f"high={settings.high_threshold}). Falling back to default thresholds.")
            settings = replace(settings, low_threshold=defaults.low_threshold,
                               high_threshold=defaults.high_threshold)
            settings_updated = True
        if settings.alarm_duration_seconds > MAX_TIMER_SECONDS:
            logger.warning(
                f"Persisted alarm duration is too long ({settings.alarm_duration} "
                f"{settings.alarm_duration_unit.value}). Falling back to the default duration.")
            settings = replace(settings, alarm_duration=defaults.alarm_duration,
                               alarm_duration_unit=defaults.alarm_duration_unit)
            settings_updated = True

        self._settings = settings
        if settings_updated:
            self.save(settings)
        logger.info(f"Settings loaded: {settings}")
        return settings

    def save(self, settings: Settings) -> None:
        try:
            self._kv_store.set(SETTINGS_KEY, json.dumps(settings.to_dict(), ensure_ascii=False))
            logger.info("Settings saved.")
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error saving settings: {e}", exc_info=True)

    def update(self, **changes) -> Settings:
        """Applies a user edit. Invalid edits raise ValidationError and keep the old settings."""
        unknown = set(changes) - set(EDITABLE_FIELDS) - {"media_handle"}
        if unknown:
            raise ValidationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        if "alarm_duration_unit" in changes:
            try:
                changes["alarm_duration_unit"] = _parse_unit(changes["alarm_duration_unit"])
            except ValueError as e:
                raise ValidationError(str(e)) from e

        candidate = validate_settings(replace(self._settings, **changes))
        self._settings = candidate
        logger.info(f"Settings updated: {changes}")
        self.save(candidate)
        for callback in self._listeners:
            callback(candidate)
        return candidate
