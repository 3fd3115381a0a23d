from PyQt5.QtCore import QObject, QTimer

from incubator_monitor.constants import QTIMER_MAX_INTERVAL_MS
from incubator_monitor.logging import logger


class TimerHandle:
    """Cancellable one-shot timer. `cancel()` is safe to call any number of times."""

    def __init__(self, timer, name):
        self._timer = timer
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
        self._timer.stop()
        self._timer.deleteLater()
        logger.debug(f"Timer '{self.name}' cancelled.")
        return True


class QtScheduler(QObject):
    """
    Runs callbacks on the Qt event loop after a delay.

    Expiries are delivered through the same event queue as MQTT signals and
    console commands, so they never run concurrently with them. Delays longer
    than one QTimer interval are split into consecutive intervals.
    """

    def call_later(self, seconds, callback, name="timer"):
        timer = QTimer(self)
        timer.setSingleShot(True)
        handle = TimerHandle(timer, name)
        remaining_ms = [max(0, int(seconds * 1000))]

        def _start_next():
            interval = min(remaining_ms[0], QTIMER_MAX_INTERVAL_MS)
            remaining_ms[0] -= interval
            timer.start(interval)

        def _fire():
            if not handle.active:
                return
            if remaining_ms[0] > 0:
                _start_next()
                return
            handle.fired = True
            timer.deleteLater()
            callback()

        timer.timeout.connect(_fire)
        _start_next()
        logger.debug(f"Timer '{name}' scheduled in {seconds}s.")
        return handle
