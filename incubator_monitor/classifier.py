from incubator_monitor.constants import ConnectionState, Status


def classify(reading, settings) -> Status:
    """
    Maps a reading to LOW/NORMAL/HIGH against the current thresholds.

    Strict comparisons: a value exactly at a threshold is NORMAL. There is no
    hysteresis band.
    """
    if reading.value < settings.low_threshold:
        return Status.LOW
    if reading.value > settings.high_threshold:
        return Status.HIGH
    return Status.NORMAL


def current_status(latest_reading, settings, connection_state) -> Status:
    """Status for display: DISCONNECTED wins while there is no active session."""
    if connection_state != ConnectionState.CONNECTED or latest_reading is None:
        return Status.DISCONNECTED
    return classify(latest_reading, settings)
