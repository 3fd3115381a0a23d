import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from incubator_monitor.constants import AlarmState, ConnectionState, RelayState, Status
from incubator_monitor.exceptions import MalformedPayloadError

_DECIMAL_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class Reading:
    value: float
    received_at: datetime

    @classmethod
    def from_payload(cls, payload, received_at: datetime) -> "Reading":
        """Parses an ASCII/UTF-8 decimal payload such as ``"36.5"``."""
        if isinstance(payload, (bytes, bytearray)):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedPayloadError(f"Payload is not UTF-8: {payload!r}") from e
        text = str(payload).strip()
        if not _DECIMAL_RE.fullmatch(text):
            raise MalformedPayloadError(f"Payload is not a decimal number: {text!r}")
        value = float(text)
        if not math.isfinite(value):
            raise MalformedPayloadError(f"Payload is out of range: {text!r}")
        return cls(value=value, received_at=received_at)

    def to_dict(self) -> dict:
        return {"value": self.value, "received_at": self.received_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict) -> "Reading":
        return cls(value=float(data["value"]), received_at=datetime.fromisoformat(data["received_at"]))


@dataclass(frozen=True)
class AlarmEpisode:
    """One active alarm, from trigger to stop."""

    episode_id: int
    started_at: datetime
    trigger_reading: Reading
    trigger_status: Status
    duration_seconds: int


@dataclass(frozen=True)
class AlarmSnapshot:
    state: AlarmState = AlarmState.STANDBY
    episode: Optional[AlarmEpisode] = None
    episodes_started: int = 0


@dataclass(frozen=True)
class ConnectionSession:
    state: ConnectionState = ConnectionState.DISCONNECTED
    last_error: Optional[str] = None
    client_id: Optional[str] = None


@dataclass(frozen=True)
class RelaySnapshot:
    # Last state reported by the device. Only this drives display.
    confirmed: RelayState = RelayState.OFF
    is_confirmed: bool = False
    # Locally requested, not yet acknowledged.
    requested: Optional[RelayState] = None
    requested_at: Optional[datetime] = field(default=None, compare=False)
