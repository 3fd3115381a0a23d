from PyQt5.QtCore import QObject, pyqtSignal, pyqtSlot

from incubator_monitor.alarm import AlarmController
from incubator_monitor.classifier import classify, current_status
from incubator_monitor.console import COMMANDS, CommandError, parse_command
from incubator_monitor.constants import DATA_TIMEOUT_SECONDS, NO_DATA_ALERT_TITLE, AlarmState, ConnectionState, Status
from incubator_monitor.exceptions import ValidationError
from incubator_monitor.logging import data_logger, logger
from incubator_monitor.relay import RelayController
from incubator_monitor.settings import parse_setting_text


def format_timestamp(moment):
    return moment.strftime('%Y-%m-%d %H:%M:%S') + '.' + str(moment.microsecond // 1000).zfill(3)


class MonitorController(QObject):
    """
    Ties the components together on the Qt event loop.

    Every input (readings and relay state from the ConnectionManager, timer
    expiries from the scheduler, console commands) arrives as a queued signal
    or timer callback on the thread this object lives in, so alarm and relay
    transitions never overlap.

    For each reading: classify, then alarm decision, then history.
    """
    statusChanged = pyqtSignal(object)   # Status
    alarmChanged = pyqtSignal(object)    # AlarmSnapshot
    relayChanged = pyqtSignal(object)    # RelaySnapshot
    output = pyqtSignal(str)             # command responses
    quitRequested = pyqtSignal()

    def __init__(self, connection, settings_store, history, presenter, scheduler,
                 data_timeout=DATA_TIMEOUT_SECONDS, parent=None):
        super().__init__(parent)
        self.connection = connection
        self.settings_store = settings_store
        self.history = history
        self.presenter = presenter
        self.scheduler = scheduler
        self.data_timeout = data_timeout
        self.latest_reading = None
        self.status = Status.DISCONNECTED
        self._watchdog = None
        self._no_data_notified = False

        self.alarm = AlarmController(presenter, scheduler, lambda: self.settings_store.current,
                                     on_change=self.alarmChanged.emit)
        self.relay = RelayController(connection, connection.topics.actuator_control, scheduler,
                                     lambda: self.connection.state, on_change=self.relayChanged.emit)

        connection.readingReceived.connect(self.handle_reading)
        connection.relayStateReceived.connect(self.relay.on_state_message)
        connection.sessionChanged.connect(self._on_session_changed)
        connection.errorOccurred.connect(self._on_transport_error)
        settings_store.add_listener(self._on_settings_changed)

    def start(self):
        self.history.restore()
        self.connection.connect()

    def stop(self):
        """Transport teardown. An active alarm keeps running until muted or timed out."""
        self._cancel_watchdog()
        self.connection.disconnect()

    @pyqtSlot(object)
    def handle_reading(self, reading):
        settings = self.settings_store.current
        status = classify(reading, settings)
        self.alarm.handle_reading(reading, status)
        self.history.record(reading)
        self.latest_reading = reading
        data_logger.info(f"{format_timestamp(reading.received_at)};{reading.value};{status.value}")
        self._clear_no_data_notice()
        self._arm_watchdog()
        self._update_status()

    def mute(self):
        self.alarm.mute()
        self._clear_no_data_notice()

    def toggle_relay(self):
        return self.relay.toggle()

    @pyqtSlot(str)
    def handle_command(self, line):
        """Runs one console command and returns (and emits) the response text."""
        try:
            response = self._run_command(parse_command(line))
        except (CommandError, ValidationError) as e:
            logger.warning(f"Command '{line}' rejected: {e}")
            response = f"Error: {e}"
        if response:
            self.output.emit(response)
        return response

    def _run_command(self, command):
        if command.name == "mute":
            was_active = self.alarm.state == AlarmState.ACTIVE
            self.mute()
            return "Alarm muted." if was_active else "No active alarm."
        if command.name == "toggle":
            return "Relay toggle requested." if self.toggle_relay() else "Relay toggle not sent."
        if command.name == "status":
            return self.describe()
        if command.name == "history":
            readings = self.history.snapshot()
            if not readings:
                return "No readings recorded."
            lines = [f"{format_timestamp(r.received_at)}  {r.value:.2f}°C" for r in readings]
            lines.append(f"Trend: {self.history.trend().value}")
            return "\n".join(lines)
        if command.name == "clear-history":
            self.history.clear()
            return "History cleared."
        if command.name == "reconnect":
            self.connection.reconnect()
            return "Reconnecting..."
        if command.name == "set":
            field_name, text = command.args
            value = parse_setting_text(field_name, text)
            self.settings_store.update(**{field_name: value})
            return f"{field_name} = {value.value if hasattr(value, 'value') else value}"
        if command.name == "help":
            return "\n".join(f"{name:<14} {description}" for name, description in COMMANDS.items())
        if command.name == "quit":
            self.quitRequested.emit()
            return "Shutting down..."
        return ""

    def describe(self):
        session = self.connection.session
        settings = self.settings_store.current
        relay = self.relay.snapshot
        reading = self.latest_reading
        lines = [
            f"Connection: {session.state.value}" + (f" ({session.last_error})" if session.last_error else ""),
            f"Temperature: {reading.value:.2f}°C" if reading else "Temperature: --",
            f"Status: {self.status.value} (low {settings.low_threshold}°C, high {settings.high_threshold}°C)",
            f"Alarm: {self.alarm.state.value}" + ("" if settings.alarm_enabled else " (disabled)"),
            f"Relay: {relay.confirmed.value}" + ("" if relay.is_confirmed else " (unconfirmed)")
            + (f", requested {relay.requested.value}" if relay.requested else ""),
        ]
        return "\n".join(lines)

    @pyqtSlot(object)
    def _on_session_changed(self, session):
        if session.state == ConnectionState.CONNECTED:
            self._arm_watchdog()
        else:
            self._cancel_watchdog()
        self._update_status()

    @pyqtSlot(object)
    def _on_transport_error(self, error):
        self.output.emit(f"Error: {error}")

    def _on_settings_changed(self, settings):
        self._update_status()

    def _update_status(self):
        status = current_status(self.latest_reading, self.settings_store.current, self.connection.state)
        if status != self.status:
            logger.info(f"Status: {self.status.value} -> {status.value}")
            self.status = status
            self.statusChanged.emit(status)

    # --- Stale data watchdog ---

    def _arm_watchdog(self):
        self._cancel_watchdog()
        if self.connection.state != ConnectionState.CONNECTED or self._no_data_notified:
            return
        self._watchdog = self.scheduler.call_later(self.data_timeout, self._on_data_timeout, name="data-timeout")

    def _cancel_watchdog(self):
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _on_data_timeout(self):
        self._watchdog = None
        if self.connection.state != ConnectionState.CONNECTED:
            return
        message = f"No data from the device for {self.data_timeout:.0f} s, check the device or the connection"
        logger.warning(message)
        self._no_data_notified = True
        try:
            self.presenter.present(NO_DATA_ALERT_TITLE, message)
        except Exception as e:
            logger.error(f"Alert presenter failed: {e}", exc_info=True)

    def _clear_no_data_notice(self):
        if not self._no_data_notified:
            return
        self._no_data_notified = False
        if self.alarm.state == AlarmState.ACTIVE:
            return
        try:
            self.presenter.stop()
        except Exception as e:
            logger.error(f"Alert presenter failed to stop: {e}", exc_info=True)
