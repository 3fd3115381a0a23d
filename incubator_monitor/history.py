import json
import threading
from collections import deque
from typing import List, Optional, Tuple

from incubator_monitor.constants import HISTORY_CAPACITY, TREND_TOLERANCE, TREND_WINDOW, Trend
from incubator_monitor.logging import logger
from incubator_monitor.models import Reading

HISTORY_KEY = "history"


class HistoryBuffer:
    """
    Bounded FIFO of recent readings.

    Appends evict the oldest entry once `capacity` is reached. `snapshot()`
    copies under the lock, so callers can iterate while the MQTT side keeps
    appending.
    """

    def __init__(self, capacity=HISTORY_CAPACITY, kv_store=None):
        if capacity <= 0:
            raise ValueError(f"History capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._readings = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._kv_store = kv_store

    def __len__(self):
        with self._lock:
            return len(self._readings)

    def record(self, reading: Reading) -> None:
        with self._lock:
            self._readings.append(reading)
        self._persist()

    def clear(self) -> None:
        with self._lock:
            self._readings.clear()
        if self._kv_store is not None:
            try:
                self._kv_store.remove(HISTORY_KEY)
            except OSError as e:
                logger.error(f"Could not remove persisted history: {e}", exc_info=True)
        logger.info("History cleared.")

    def snapshot(self) -> Tuple[Reading, ...]:
        with self._lock:
            return tuple(self._readings)

    def latest(self) -> Optional[Reading]:
        with self._lock:
            return self._readings[-1] if self._readings else None

    def trend(self, window=TREND_WINDOW, tolerance=TREND_TOLERANCE) -> Trend:
        """Direction of the last `window` readings, oldest vs newest."""
        recent = self.snapshot()[-window:]
        if len(recent) < 2:
            return Trend.STEADY
        delta = recent[-1].value - recent[0].value
        if delta > tolerance:
            return Trend.RISING
        if delta < -tolerance:
            return Trend.FALLING
        return Trend.STEADY

    def restore(self) -> int:
        """Loads persisted readings, keeping the newest `capacity`. Returns the count loaded."""
        if self._kv_store is None:
            return 0
        raw = self._kv_store.get(HISTORY_KEY)
        if raw is None:
            return 0
        readings: List[Reading] = []
        try:
            for item in json.loads(raw):
                readings.append(Reading.from_dict(item))
        except (json.JSONDecodeError, TypeError, KeyError, ValueError) as e:
            logger.error(f"Persisted history is malformed ({e}), starting empty.")
            return 0
        with self._lock:
            self._readings.clear()
            self._readings.extend(readings)
            count = len(self._readings)
        logger.info(f"Restored {count} readings from history.")
        return count

    def _persist(self) -> None:
        if self._kv_store is None:
            return
        payload = json.dumps([r.to_dict() for r in self.snapshot()])
        try:
            self._kv_store.set(HISTORY_KEY, payload)
        except OSError as e:
            logger.error(f"Could not persist history: {e}", exc_info=True)
