import os
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from paho.mqtt import client as mqtt
from PyQt5.QtCore import QCoreApplication

from incubator_monitor.config import BrokerConfig
from incubator_monitor.history import HistoryBuffer
from incubator_monitor.models import Reading
from incubator_monitor.mqtt_utils import ConnectionManager
from incubator_monitor.settings import SettingsStore
from incubator_monitor.storage import MemoryKeyValueStore

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

T0 = datetime(2026, 1, 1, 12, 0, 0)


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


class ManualHandle:
    def __init__(self, due, callback, name):
        self.due = due
        self.callback = callback
        self.name = name
        self.cancelled = False
        self.fired = False

    @property
    def active(self):
        return not (self.cancelled or self.fired)

    def cancel(self):
        if not self.active:
            return False
        self.cancelled = True
        return True


class ManualScheduler:
    """Scheduler driven by simulated time."""

    def __init__(self):
        self.now = 0.0
        self.handles = []

    def call_later(self, seconds, callback, name="timer"):
        handle = ManualHandle(self.now + seconds, callback, name)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if h.active]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.due)
            self.now = handle.due
            handle.fired = True
            handle.callback()
        self.now = target


class RecordingPresenter:
    def __init__(self, fail=False):
        self.presented = []
        self.stops = 0
        self.fail = fail

    def present(self, title, body):
        self.presented.append((title, body))
        if self.fail:
            raise RuntimeError("notification service unavailable")

    def stop(self):
        self.stops += 1
        if self.fail:
            raise RuntimeError("notification service unavailable")


class FakeMqttClient:
    """Stands in for paho's Client; simulate_* invoke the callbacks paho would call."""

    def __init__(self, client_id):
        self.client_id = client_id
        self.connect_args = None
        self.loop_started = False
        self.loop_stopped = False
        self.disconnect_calls = 0
        self.subscriptions = []
        self.published = []
        self.publish_rc = mqtt.MQTT_ERR_SUCCESS
        self.subscribe_rc = mqtt.MQTT_ERR_SUCCESS

    def connect_async(self, host, port, keepalive):
        self.connect_args = (host, port, keepalive)

    def loop_start(self):
        self.loop_started = True

    def loop_stop(self):
        self.loop_stopped = True

    def disconnect(self):
        self.disconnect_calls += 1

    def subscribe(self, topics):
        self.subscriptions.append(list(topics))
        return self.subscribe_rc, len(self.subscriptions)

    def publish(self, topic, payload=None, qos=0):
        self.published.append((topic, payload, qos))
        return SimpleNamespace(rc=self.publish_rc, mid=len(self.published))

    def simulate_connect(self, reason_code=0):
        self.on_connect(self, None, {}, reason_code, None)

    def simulate_connect_fail(self):
        self.on_connect_fail(self, None)

    def simulate_disconnect(self, reason_code=128):
        self.on_disconnect(self, None, {}, reason_code, None)

    def simulate_message(self, topic, payload):
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        self.on_message(self, None, SimpleNamespace(topic=topic, payload=payload))

    def simulate_suback(self, reason_codes):
        self.on_subscribe(self, None, 1, reason_codes, None)


@pytest.fixture
def broker_config():
    return BrokerConfig(broker="broker.test", port=1883, username="user", password="secret")


@pytest.fixture
def fake_clients():
    return []


@pytest.fixture
def connection(broker_config, fake_clients):
    def factory(client_id):
        client = FakeMqttClient(client_id)
        fake_clients.append(client)
        return client

    return ConnectionManager(broker_config, client_factory=factory, clock=lambda: T0)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def presenter():
    return RecordingPresenter()


@pytest.fixture
def kv_store():
    return MemoryKeyValueStore()


@pytest.fixture
def settings_store(kv_store):
    store = SettingsStore(kv_store)
    store.load()
    return store


@pytest.fixture
def history():
    return HistoryBuffer(capacity=100)


def make_reading(value, seconds=0):
    return Reading(value=value, received_at=T0 + timedelta(seconds=seconds))
