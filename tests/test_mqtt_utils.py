import pytest
from paho.mqtt import client as mqtt
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.reasoncodes import ReasonCode

from conftest import T0
from incubator_monitor.constants import ConnectionState
from incubator_monitor.exceptions import NotConnectedError, PublishError, SubscriptionError, TransportConnectError
from incubator_monitor.mqtt_utils import is_fatal_connack, new_client_id


@pytest.fixture
def states(connection):
    seen = []
    connection.sessionChanged.connect(lambda session: seen.append(session.state))
    return seen


@pytest.fixture
def readings(connection):
    seen = []
    connection.readingReceived.connect(seen.append)
    return seen


def connected_client(connection, fake_clients):
    connection.connect()
    client = fake_clients[-1]
    client.simulate_connect(0)
    return client


def test_connect_starts_background_loop(connection, fake_clients, states, broker_config) -> None:
    connection.connect()

    client = fake_clients[0]
    assert client.connect_args == (broker_config.broker, broker_config.port, broker_config.keepalive)
    assert client.loop_started
    assert states == [ConnectionState.CONNECTING]
    assert connection.session.client_id == client.client_id


def test_successful_connack_subscribes_both_topics_in_one_batch(connection, fake_clients, states) -> None:
    client = connected_client(connection, fake_clients)

    assert connection.state == ConnectionState.CONNECTED
    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert client.subscriptions == [[("incubator/temp", 1), ("incubator/relay/state", 1)]]


def test_drop_and_recovery_resubscribes(connection, fake_clients, states) -> None:
    client = connected_client(connection, fake_clients)

    client.simulate_disconnect(128)
    assert connection.state == ConnectionState.RECONNECTING
    assert connection.session.last_error

    client.simulate_connect(0)
    assert connection.state == ConnectionState.CONNECTED
    assert len(client.subscriptions) == 2
    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED,
                      ConnectionState.RECONNECTING, ConnectionState.CONNECTED]


def test_unreachable_broker_reports_error_and_keeps_client(connection, fake_clients) -> None:
    connection.connect()
    client = fake_clients[0]
    client.simulate_connect_fail()

    assert connection.state == ConnectionState.ERROR
    assert "broker.test" in connection.session.last_error
    assert not client.loop_stopped

    client.simulate_connect(0)
    assert connection.state == ConnectionState.CONNECTED


def test_failed_retry_while_reconnecting_stays_reconnecting(connection, fake_clients) -> None:
    client = connected_client(connection, fake_clients)
    client.simulate_disconnect()
    client.simulate_connect_fail()
    assert connection.state == ConnectionState.RECONNECTING


def test_rejected_credentials_stop_reconnecting(connection, fake_clients) -> None:
    errors = []
    connection.errorOccurred.connect(errors.append)
    connection.connect()
    client = fake_clients[0]

    client.simulate_connect(ReasonCode(PacketTypes.CONNACK, identifier=135))

    assert connection.state == ConnectionState.ERROR
    assert client.loop_stopped
    assert len(errors) == 1
    assert isinstance(errors[0], TransportConnectError)

    # Late callbacks from the abandoned client change nothing.
    client.simulate_connect(0)
    assert connection.state == ConnectionState.ERROR


def test_transient_refusal_keeps_retrying(connection, fake_clients) -> None:
    connection.connect()
    client = fake_clients[0]
    client.simulate_connect(3)  # server unavailable
    assert connection.state == ConnectionState.ERROR
    assert not client.loop_stopped


@pytest.mark.parametrize("code, fatal", [(4, True), (5, True), (134, True), (135, True), (3, False), (0, False)])
def test_is_fatal_connack(code, fatal) -> None:
    assert is_fatal_connack(code) is fatal


def test_reading_messages_are_parsed(connection, fake_clients, readings) -> None:
    client = connected_client(connection, fake_clients)
    client.simulate_message("incubator/temp", "36.6")

    assert len(readings) == 1
    assert readings[0].value == 36.6
    assert readings[0].received_at == T0


def test_malformed_reading_is_counted_and_dropped(connection, fake_clients, readings) -> None:
    client = connected_client(connection, fake_clients)
    for payload in ["warm", "", "nan", b"\xff\xfe"]:
        client.simulate_message("incubator/temp", payload)

    assert readings == []
    assert connection.malformed_payload_count == 4
    assert connection.state == ConnectionState.CONNECTED


def test_relay_state_messages_are_forwarded(connection, fake_clients) -> None:
    seen = []
    connection.relayStateReceived.connect(seen.append)
    client = connected_client(connection, fake_clients)
    client.simulate_message("incubator/relay/state", "ON")
    assert seen == ["ON"]


def test_refused_subscription_is_reported(connection, fake_clients) -> None:
    errors = []
    connection.errorOccurred.connect(errors.append)
    client = connected_client(connection, fake_clients)
    client.simulate_suback([1, 0x80])
    assert len(errors) == 1
    assert isinstance(errors[0], SubscriptionError)
    assert "1 of 2" in str(errors[0])


def test_publish_requires_connection(connection, fake_clients) -> None:
    with pytest.raises(NotConnectedError):
        connection.publish("incubator/relay/control", "ON")

    connection.connect()
    with pytest.raises(NotConnectedError):
        connection.publish("incubator/relay/control", "ON")


def test_publish_hands_message_to_client(connection, fake_clients) -> None:
    client = connected_client(connection, fake_clients)
    connection.publish("incubator/relay/control", "ON")
    assert client.published == [("incubator/relay/control", "ON", 1)]


def test_publish_failure_raises(connection, fake_clients) -> None:
    client = connected_client(connection, fake_clients)
    client.publish_rc = mqtt.MQTT_ERR_NO_CONN
    with pytest.raises(PublishError):
        connection.publish("incubator/relay/control", "OFF")


def test_manual_disconnect_ignores_later_callbacks(connection, fake_clients, readings) -> None:
    client = connected_client(connection, fake_clients)
    connection.disconnect()

    assert connection.state == ConnectionState.DISCONNECTED
    assert client.disconnect_calls == 1
    assert client.loop_stopped

    client.simulate_disconnect(0)
    client.simulate_message("incubator/temp", "40")
    assert connection.state == ConnectionState.DISCONNECTED
    assert readings == []


def test_reconnect_uses_fresh_client_id(connection, fake_clients) -> None:
    first = connected_client(connection, fake_clients)
    connection.reconnect()

    second = fake_clients[-1]
    assert second is not first
    assert second.client_id != first.client_id
    assert connection.state == ConnectionState.CONNECTING

    first.simulate_connect(0)
    assert connection.state == ConnectionState.CONNECTING


def test_client_ids_are_unique() -> None:
    ids = {new_client_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith("incubator_monitor_") for i in ids)
