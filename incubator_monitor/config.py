import json
import os
from dataclasses import dataclass
from typing import Optional

from incubator_monitor.constants import (
    APP_ROOT_DIR, DATA_TIMEOUT_SECONDS, DEFAULT_ACTUATOR_CONTROL_TOPIC, DEFAULT_ACTUATOR_STATE_TOPIC,
    DEFAULT_KEEPALIVE_SECONDS, DEFAULT_READING_TOPIC, MAX_TIMER_SECONDS, RECONNECT_INTERVAL_SECONDS)
from incubator_monitor.exceptions import ConfigurationError
from incubator_monitor.logging import logger

SECRETS_FILE_PATH = os.path.join(APP_ROOT_DIR, "secrets.json")

REQUIRED_KEYS = ["broker", "port", "username", "password"]
TRANSPORTS = ("tcp", "websockets")


@dataclass(frozen=True)
class TopicConfig:
    reading: str = DEFAULT_READING_TOPIC
    actuator_state: str = DEFAULT_ACTUATOR_STATE_TOPIC
    actuator_control: str = DEFAULT_ACTUATOR_CONTROL_TOPIC


@dataclass(frozen=True)
class BrokerConfig:
    broker: str
    port: int
    username: str
    password: str
    transport: str = "tcp"
    tls: bool = False
    websocket_path: Optional[str] = None
    keepalive: int = DEFAULT_KEEPALIVE_SECONDS
    reconnect_interval: int = RECONNECT_INTERVAL_SECONDS
    # Equal to reconnect_interval means a fixed retry interval.
    reconnect_max_interval: int = RECONNECT_INTERVAL_SECONDS
    data_timeout: float = DATA_TIMEOUT_SECONDS
    topics: TopicConfig = TopicConfig()

    def __repr__(self):
        return (f"BrokerConfig(broker={self.broker!r}, port={self.port}, username={self.username!r}, "
                f"transport={self.transport!r}, tls={self.tls})")


def _positive_int(secrets, key, default):
    value = secrets.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"'{key}' must be a positive integer, got {value!r}")
    return value


def parse_broker_config(secrets: dict) -> BrokerConfig:
    if not isinstance(secrets, dict):
        raise ConfigurationError("Secrets must be a JSON object.")

    missing_keys = [key for key in REQUIRED_KEYS if key not in secrets]
    if missing_keys:
        raise ConfigurationError(f"Secrets are missing required keys: {', '.join(missing_keys)}")

    port = secrets["port"]
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigurationError(f"'port' must be an integer between 1 and 65535, got {port!r}")

    transport = secrets.get("transport", "tcp")
    if transport not in TRANSPORTS:
        raise ConfigurationError(f"'transport' must be one of {', '.join(TRANSPORTS)}, got {transport!r}")

    reconnect_interval = _positive_int(secrets, "reconnect_interval", RECONNECT_INTERVAL_SECONDS)
    reconnect_max_interval = _positive_int(secrets, "reconnect_max_interval", reconnect_interval)
    if reconnect_max_interval < reconnect_interval:
        raise ConfigurationError("'reconnect_max_interval' must not be below 'reconnect_interval'")

    data_timeout = secrets.get("data_timeout", DATA_TIMEOUT_SECONDS)
    if (isinstance(data_timeout, bool) or not isinstance(data_timeout, (int, float))
            or not 0 < data_timeout <= MAX_TIMER_SECONDS):
        raise ConfigurationError(
            f"'data_timeout' must be a positive number up to {MAX_TIMER_SECONDS}, got {data_timeout!r}")

    topics = secrets.get("topics", {})
    if not isinstance(topics, dict):
        raise ConfigurationError("'topics' must be a JSON object")
    unknown_topics = set(topics) - {"reading", "actuator_state", "actuator_control"}
    if unknown_topics:
        raise ConfigurationError(f"Unknown topic keys: {', '.join(sorted(unknown_topics))}")

    return BrokerConfig(
        broker=str(secrets["broker"]),
        port=port,
        username=str(secrets["username"]),
        password=str(secrets["password"]),
        transport=transport,
        tls=bool(secrets.get("tls", False)),
        websocket_path=secrets.get("websocket_path"),
        keepalive=_positive_int(secrets, "keepalive", DEFAULT_KEEPALIVE_SECONDS),
        reconnect_interval=reconnect_interval,
        reconnect_max_interval=reconnect_max_interval,
        data_timeout=float(data_timeout),
        topics=TopicConfig(**topics),
    )


def load_broker_config(path=SECRETS_FILE_PATH) -> BrokerConfig:
    """
    Loads broker credentials from secrets.json.
    Raises ConfigurationError with a user-readable message on any problem.
    """
    if not os.path.exists(path):
        template_path = os.path.join(os.path.dirname(path), "secrets_template.json")
        msg = f"Secrets file not found: {path}\n"
        if os.path.exists(template_path):
            msg += "Please copy 'secrets_template.json' to 'secrets.json' and fill in your details."
        else:
            msg += "Template 'secrets_template.json' is also missing. Cannot continue."
        raise ConfigurationError(msg)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            secrets = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Could not decode {path}. Is it valid JSON?\n{e}") from e
    except OSError as e:
        raise ConfigurationError(f"Could not read {path}: {e}") from e

    config = parse_broker_config(secrets)
    logger.info(f"Successfully loaded broker configuration from {path}.")
    return config
