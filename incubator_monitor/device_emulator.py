import argparse
import random
import sys
import time

import paho.mqtt.client as mqtt

from incubator_monitor.config import SECRETS_FILE_PATH, load_broker_config
from incubator_monitor.constants import RelayState
from incubator_monitor.exceptions import ConfigurationError
from incubator_monitor.relay import parse_relay_payload

client_id = "incubator_device_simulator"

# Initial device state
device_state = {
    "temperature": 37.0,  # °C
    "relay": RelayState.OFF,
}


def simulate_temperature(state):
    """Heater relay ON warms the chamber, OFF lets it cool towards room temperature."""
    if state["relay"] == RelayState.ON:
        change = random.uniform(0.3, 1.5)
    else:
        change = random.uniform(-1.0, 0.1)
    state["temperature"] += change
    state["temperature"] = max(15.0, min(state["temperature"], 80.0))
    return state["temperature"]


def make_callbacks(topics):
    def on_connect(client, userdata, flags, reason_code, properties):
        print(f"on_connect: connected with result code {reason_code}")
        client.subscribe(topics.actuator_control)
        # Report the current relay state so monitors start with a confirmed value.
        client.publish(topics.actuator_state, device_state["relay"].value, qos=1, retain=True)

    def on_message(client, userdata, msg):
        if msg.topic != topics.actuator_control:
            print(f"on_message: unhandled topic: {msg.topic}")
            return
        requested = parse_relay_payload(msg.payload)
        if device_state["relay"] != requested:
            print(f"on_message: relay -> {requested.value}")
            device_state["relay"] = requested
        # Always acknowledge, the monitor waits for the echo.
        client.publish(topics.actuator_state, requested.value, qos=1, retain=True)

    return on_connect, on_message


def main(argv=None):
    parser = argparse.ArgumentParser(description="Incubator device emulator")
    parser.add_argument("--secrets", default=SECRETS_FILE_PATH)
    parser.add_argument("--period", type=float, default=5.0, help="seconds between readings")
    args = parser.parse_args(argv)

    try:
        config = load_broker_config(args.secrets)
    except ConfigurationError as e:
        print(f"CRITICAL: {e}", file=sys.stderr)
        return 1
    topics = config.topics

    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id, transport=config.transport)
    client.username_pw_set(config.username, config.password)
    if config.transport == "websockets" and config.websocket_path:
        client.ws_set_options(path=config.websocket_path)
    if config.tls:
        client.tls_set()
    client.on_connect, client.on_message = make_callbacks(topics)

    try:
        client.connect(config.broker, config.port, config.keepalive)
    except (OSError, ValueError) as e:
        print(f"CRITICAL: could not connect to {config.broker}:{config.port}: {e}", file=sys.stderr)
        return 1
    client.loop_start()

    try:
        print("Device simulator started. Press Ctrl+C to stop.")
        while True:
            temperature = simulate_temperature(device_state)
            client.publish(topics.reading, f"{temperature:.2f}")
            time.sleep(args.period)
    except KeyboardInterrupt:
        print("Device simulator stopped")
    finally:
        client.loop_stop()
        client.disconnect()
    return 0


if __name__ == '__main__':
    sys.exit(main())
