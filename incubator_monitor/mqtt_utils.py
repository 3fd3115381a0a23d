import uuid
from datetime import datetime

from PyQt5.QtCore import QObject, pyqtSignal, pyqtSlot
from paho.mqtt import client as mqtt

from incubator_monitor.constants import CLIENT_ID_PREFIX, ConnectionState
from incubator_monitor.exceptions import (
    MalformedPayloadError, NotConnectedError, PublishError, SubscriptionError, TransportConnectError)
from incubator_monitor.logging import logger
from incubator_monitor.models import ConnectionSession, Reading

# CONNACK codes that no amount of retrying will fix (MQTT 3.1.1 and 5 numbering).
FATAL_CONNACK_CODES = {4, 5, 134, 135}


def reason_value(reason_code):
    return int(getattr(reason_code, "value", reason_code))


def is_fatal_connack(reason_code):
    return reason_value(reason_code) in FATAL_CONNACK_CODES


def new_client_id():
    return f"{CLIENT_ID_PREFIX}_{uuid.uuid4().hex[:12]}"


class ConnectionManager(QObject):
    """
    Owns the MQTT session: connect, subscribe, reconnect, publish.

    Paho runs its network loop on its own thread. Its callbacks only emit the
    private _transport* signals; Qt queues those to the thread this object
    lives in, where the session state is changed and the public signals are
    emitted. Reconnection after an unexpected drop is left to paho's loop,
    using `reconnect_interval` (and `reconnect_max_interval` as the backoff
    ceiling).
    """
    sessionChanged = pyqtSignal(object)       # ConnectionSession
    readingReceived = pyqtSignal(object)      # Reading
    relayStateReceived = pyqtSignal(str)      # raw payload
    messageReceived = pyqtSignal(str, str)    # topic, payload
    errorOccurred = pyqtSignal(object)        # TransportError

    _transportConnected = pyqtSignal(object, object)            # client, reason code
    _transportConnectFailed = pyqtSignal(object)                # client
    _transportDisconnected = pyqtSignal(object, object)         # client, reason code
    _transportMessage = pyqtSignal(object, str, object, object)  # client, topic, payload, received_at
    _transportSubscribed = pyqtSignal(object, object)           # client, reason codes

    def __init__(self, config, client_factory=None, clock=datetime.now, parent=None):
        super().__init__(parent)
        self.config = config
        self.topics = config.topics
        self._client_factory = client_factory or self._create_paho_client
        self._clock = clock
        self._client = None
        self._manual_disconnect = False
        self._session = ConnectionSession()
        self.malformed_payload_count = 0

        self._transportConnected.connect(self._handle_connected)
        self._transportConnectFailed.connect(self._handle_connect_failed)
        self._transportDisconnected.connect(self._handle_disconnected)
        self._transportMessage.connect(self._handle_message)
        self._transportSubscribed.connect(self._handle_subscribed)

    @property
    def session(self) -> ConnectionSession:
        return self._session

    @property
    def state(self) -> ConnectionState:
        return self._session.state

    def _create_paho_client(self, client_id):
        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id,
                             transport=self.config.transport)
        client.username_pw_set(self.config.username, self.config.password)
        if self.config.transport == "websockets" and self.config.websocket_path:
            client.ws_set_options(path=self.config.websocket_path)
        if self.config.tls:
            client.tls_set()
        client.reconnect_delay_set(min_delay=self.config.reconnect_interval,
                                   max_delay=self.config.reconnect_max_interval)
        return client

    # --- Paho callbacks (network thread) ---

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        self._transportConnected.emit(client, reason_code)

    def _on_connect_fail(self, client, userdata):
        self._transportConnectFailed.emit(client)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._transportDisconnected.emit(client, reason_code)

    def _on_message(self, client, userdata, msg):
        self._transportMessage.emit(client, msg.topic, msg.payload, self._clock())

    def _on_subscribe(self, client, userdata, mid, reason_codes, properties=None):
        self._transportSubscribed.emit(client, reason_codes)

    # --- Public API ---

    def connect(self):
        """Starts a new session with a fresh client id. Retries run in the background."""
        if self._client is not None:
            logger.warning("MQTT session already started, ignoring connect().")
            return

        self._manual_disconnect = False
        client_id = new_client_id()
        client = self._client_factory(client_id)
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe
        self._client = client
        self._set_session(ConnectionSession(ConnectionState.CONNECTING, client_id=client_id))

        try:
            logger.info(f"Attempting to connect to {self.config.broker}:{self.config.port} as {client_id}")
            client.connect_async(self.config.broker, self.config.port, self.config.keepalive)
            # Network loop in a background thread; it keeps retrying the first connection too.
            client.loop_start()
        except (OSError, ValueError) as e:
            logger.error(f"MQTT connection setup error: {e}", exc_info=True)
            self._client = None
            self._set_session(ConnectionSession(ConnectionState.ERROR, last_error=str(e), client_id=client_id))
            self.errorOccurred.emit(TransportConnectError(f"Connection setup failed: {e}"))

    def disconnect(self):
        """Manual teardown: stops the reconnection loop and drops pending publishes."""
        self._manual_disconnect = True
        client, self._client = self._client, None
        if client is not None:
            logger.info("Disconnecting MQTT client and stopping Paho loop...")
            try:
                client.disconnect()
            except OSError as e:
                logger.warning(f"Error while disconnecting: {e}")
            client.loop_stop()
        self._set_session(ConnectionSession(ConnectionState.DISCONNECTED))

    def reconnect(self):
        logger.info("Manual reconnect requested.")
        self.disconnect()
        self.connect()

    def publish(self, topic, payload, qos=1):
        """Raises NotConnectedError or PublishError when the message cannot be handed to paho."""
        if self._client is None or self.state != ConnectionState.CONNECTED:
            logger.warning("Cannot publish, MQTT client not connected.")
            raise NotConnectedError(f"Cannot publish to {topic}: not connected")

        logger.info(f"Attempting to publish: Topic='{topic}', Payload='{payload}'")
        try:
            info = self._client.publish(topic, payload=payload, qos=qos)
        except (OSError, ValueError) as e:
            logger.error(f"Error publishing message to {topic}: {e}", exc_info=True)
            raise PublishError(f"Publishing to {topic} failed: {e}") from e
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Failed to publish to {topic}, return code: {info.rc}")
            raise PublishError(f"Publishing to {topic} failed with code {info.rc}")
        logger.info(f"Successfully published: Topic='{topic}', Payload='{payload}', MID={info.mid}")

    # --- Slots (owner thread) ---

    def _is_current(self, client):
        return client is not None and client is self._client

    @pyqtSlot(object, object)
    def _handle_connected(self, client, reason_code):
        if not self._is_current(client):
            return
        if reason_value(reason_code) != 0:
            message = f"Connection refused: {reason_code}"
            if is_fatal_connack(reason_code):
                logger.error(f"{message}. Credentials rejected, reconnection stopped.")
                self._client = None
                self._manual_disconnect = True
                client.disconnect()
                client.loop_stop()
            else:
                logger.error(f"{message}. Will retry.")
            self._set_session(ConnectionSession(ConnectionState.ERROR, last_error=message,
                                                client_id=self._session.client_id))
            self.errorOccurred.emit(TransportConnectError(message))
            return

        logger.info(f"Connected to MQTT broker: {self.config.broker}")
        self._set_session(ConnectionSession(ConnectionState.CONNECTED, client_id=self._session.client_id))

        # Both topics in one SUBSCRIBE; a clean session needs them again after every reconnect.
        subscriptions = [(self.topics.reading, 1), (self.topics.actuator_state, 1)]
        result, mid = client.subscribe(subscriptions)
        if result != mqtt.MQTT_ERR_SUCCESS:
            message = f"Subscription request failed with code {result}"
            logger.error(message)
            self.errorOccurred.emit(SubscriptionError(message))
        else:
            logger.info(f"Subscribed to {[topic for topic, _ in subscriptions]} (MID={mid})")

    @pyqtSlot(object)
    def _handle_connect_failed(self, client):
        if not self._is_current(client):
            return
        message = f"Could not reach {self.config.broker}:{self.config.port}"
        logger.warning(f"{message}. Retrying in background.")
        state = ConnectionState.RECONNECTING if self.state == ConnectionState.RECONNECTING else ConnectionState.ERROR
        self._set_session(ConnectionSession(state, last_error=message, client_id=self._session.client_id))

    @pyqtSlot(object, object)
    def _handle_disconnected(self, client, reason_code):
        if not self._is_current(client) or self._manual_disconnect:
            return
        logger.warning(f"Unexpected disconnection (reason: {reason_code}). Paho-MQTT will attempt to reconnect.")
        self._set_session(ConnectionSession(ConnectionState.RECONNECTING, last_error=str(reason_code),
                                            client_id=self._session.client_id))

    @pyqtSlot(object, str, object, object)
    def _handle_message(self, client, topic, payload, received_at):
        if not self._is_current(client):
            return
        if isinstance(payload, (bytes, bytearray)):
            text = payload.decode("utf-8", errors="replace")
        else:
            text = str(payload)
        logger.debug(f"Received MQTT message: Topic='{topic}', Payload='{text}'")
        self.messageReceived.emit(topic, text)

        if topic == self.topics.reading:
            try:
                reading = Reading.from_payload(payload, received_at)
            except MalformedPayloadError as e:
                self.malformed_payload_count += 1
                logger.debug(f"Dropped reading ({self.malformed_payload_count} so far): {e}")
                return
            self.readingReceived.emit(reading)
        elif topic == self.topics.actuator_state:
            self.relayStateReceived.emit(text)

    @pyqtSlot(object, object)
    def _handle_subscribed(self, client, reason_codes):
        if not self._is_current(client):
            return
        failed = [rc for rc in reason_codes if reason_value(rc) >= 0x80]
        if failed:
            message = f"Broker refused {len(failed)} of {len(reason_codes)} subscriptions: {failed}"
            logger.error(message)
            self.errorOccurred.emit(SubscriptionError(message))
        else:
            logger.debug(f"Subscriptions granted: {list(reason_codes)}")

    def _set_session(self, session: ConnectionSession):
        if session == self._session:
            return
        logger.info(f"Connection state: {self._session.state.value} -> {session.state.value}"
                    + (f" ({session.last_error})" if session.last_error else ""))
        self._session = session
        self.sessionChanged.emit(session)
