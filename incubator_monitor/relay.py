from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from incubator_monitor.constants import RELAY_CONFIRMATION_TIMEOUT_SECONDS, ConnectionState, RelayState
from incubator_monitor.exceptions import TransportError
from incubator_monitor.logging import logger
from incubator_monitor.models import RelaySnapshot


def parse_relay_payload(payload) -> RelayState:
    """Case-insensitive "ON" means ON, anything else is OFF."""
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    return RelayState.ON if str(payload).strip().upper() == RelayState.ON.value else RelayState.OFF


def inverse(state: RelayState) -> RelayState:
    return RelayState.OFF if state == RelayState.ON else RelayState.ON


class RelayController:
    """
    Remote actuator control.

    Only `confirmed` (what the device last reported) is shown as the relay
    state. A toggle publishes the inverse of the confirmed state and records it
    as `requested` until the device echoes it back on the state topic or the
    confirmation timer runs out. Independent of the alarm state.
    """

    def __init__(self, publisher, control_topic, scheduler, connection_state_provider: Callable,
                 on_change: Optional[Callable[[RelaySnapshot], None]] = None,
                 confirmation_timeout=RELAY_CONFIRMATION_TIMEOUT_SECONDS,
                 clock=datetime.now):
        self._publisher = publisher
        self.control_topic = control_topic
        self._scheduler = scheduler
        self._connection_state_provider = connection_state_provider
        self._on_change = on_change
        self.confirmation_timeout = confirmation_timeout
        self._clock = clock
        self._snapshot = RelaySnapshot()
        self._confirmation_timer = None

    @property
    def snapshot(self) -> RelaySnapshot:
        return self._snapshot

    def toggle(self) -> bool:
        """Requests the inverse of the confirmed state. Returns False if nothing was sent."""
        if self._connection_state_provider() != ConnectionState.CONNECTED:
            logger.warning("Cannot toggle relay, MQTT session is not connected.")
            return False

        target = inverse(self._snapshot.confirmed)
        try:
            self._publisher.publish(self.control_topic, target.value)
        except TransportError as e:
            logger.error(f"Relay toggle to {target.value} failed: {e}")
            return False

        logger.info(f"Requested relay {target.value}, waiting for confirmation.")
        self._cancel_confirmation_timer()
        self._confirmation_timer = self._scheduler.call_later(
            self.confirmation_timeout, self._confirmation_timed_out, name="relay-confirmation")
        self._set(replace(self._snapshot, requested=target, requested_at=self._clock()))
        return True

    def on_state_message(self, payload) -> None:
        state = parse_relay_payload(payload)
        requested = self._snapshot.requested
        if requested is not None and requested == state:
            logger.info(f"Relay {state.value} confirmed by device.")
            self._cancel_confirmation_timer()
            requested = None
        self._set(replace(self._snapshot, confirmed=state, is_confirmed=True, requested=requested,
                          requested_at=self._snapshot.requested_at if requested is not None else None))

    def _confirmation_timed_out(self) -> None:
        self._confirmation_timer = None
        requested = self._snapshot.requested
        if requested is None:
            return
        logger.error(f"Device did not confirm relay {requested.value} within {self.confirmation_timeout}s.")
        self._set(replace(self._snapshot, requested=None, requested_at=None))

    def _cancel_confirmation_timer(self) -> None:
        if self._confirmation_timer is not None:
            self._confirmation_timer.cancel()
            self._confirmation_timer = None

    def _set(self, snapshot: RelaySnapshot) -> None:
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        if self._on_change is not None:
            self._on_change(snapshot)
