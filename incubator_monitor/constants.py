import os
from enum import Enum

# Directory with secrets.json, the JSON stores and log/.
# Defaults to the package directory (or the Pyinstaller executable directory).
APP_ROOT_DIR = os.environ.get("INCUBATOR_MONITOR_HOME") or os.path.dirname(os.path.abspath(__file__))


class Status(Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    DISCONNECTED = "DISCONNECTED"


class ConnectionState(Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    ERROR = "ERROR"


class AlarmState(Enum):
    STANDBY = "STANDBY"
    ACTIVE = "ACTIVE"


class RelayState(Enum):
    ON = "ON"
    OFF = "OFF"


class DurationUnit(Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"


class Trend(Enum):
    RISING = "RISING"
    FALLING = "FALLING"
    STEADY = "STEADY"


DURATION_UNIT_SECONDS = {
    DurationUnit.SECONDS: 1,
    DurationUnit.MINUTES: 60,
}

# --- Transport topics ---
DEFAULT_READING_TOPIC = "incubator/temp"
DEFAULT_ACTUATOR_STATE_TOPIC = "incubator/relay/state"
DEFAULT_ACTUATOR_CONTROL_TOPIC = "incubator/relay/control"

# --- Connection ---
DEFAULT_KEEPALIVE_SECONDS = 60
RECONNECT_INTERVAL_SECONDS = 5
CLIENT_ID_PREFIX = "incubator_monitor"

# --- Maximum delay between readings. When it is exceeded, user is notified ---
DATA_TIMEOUT_SECONDS = 60.0

# --- Time to wait for the device to confirm a relay toggle ---
RELAY_CONFIRMATION_TIMEOUT_SECONDS = 10.0

# --- QTimer intervals are signed 32-bit milliseconds ---
QTIMER_MAX_INTERVAL_MS = 2 ** 31 - 1
# Longest alarm duration and data timeout accepted from settings and secrets
MAX_TIMER_SECONDS = QTIMER_MAX_INTERVAL_MS // 1000

# --- Number of readings kept for trend and display ---
HISTORY_CAPACITY = 100
TREND_WINDOW = 5
TREND_TOLERANCE = 0.1  # °C

# --- Alert texts ---
ALERT_TITLE = "Incubator Alert"
NO_DATA_ALERT_TITLE = "Incubator: no data"

# --- Data log ---
CSV_DATA_HEADERS = ["Time", "Temperature", "Status"]
