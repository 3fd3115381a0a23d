"""
Alarm state machine.

The transitions are pure functions: they take the current AlarmSnapshot and an
event and return the next snapshot plus the side effects to perform. The
AlarmController owns the snapshot and the auto-stop timer handle and is the
only place effects are executed.

    STANDBY --(LOW/HIGH reading, alarm enabled)--> ACTIVE
    ACTIVE  --(timer expired | mute)------------> STANDBY

An episode is bounded by its duration, not by the condition: a reading back in
range does not end it, and while ACTIVE further out-of-range readings are
ignored.
"""
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

from incubator_monitor.constants import ALERT_TITLE, AlarmState, Status
from incubator_monitor.exceptions import InvariantViolation
from incubator_monitor.logging import logger
from incubator_monitor.models import AlarmEpisode, AlarmSnapshot, Reading


@dataclass(frozen=True)
class PresentAlert:
    title: str
    body: str


@dataclass(frozen=True)
class StopAlert:
    episode_id: int


@dataclass(frozen=True)
class StartTimer:
    episode_id: int
    seconds: int


@dataclass(frozen=True)
class CancelTimer:
    episode_id: int


Transition = Tuple[AlarmSnapshot, List[object]]


def alert_body(reading, status, settings):
    if status == Status.HIGH:
        limit = f"above {settings.high_threshold}°C"
    else:
        limit = f"below {settings.low_threshold}°C"
    return f"Temperature: {reading.value}°C ({limit})"


def on_reading(snapshot: AlarmSnapshot, reading: Reading, status: Status, settings) -> Transition:
    if status not in (Status.LOW, Status.HIGH):
        return snapshot, []
    if not settings.alarm_enabled:
        return snapshot, []
    if snapshot.episode is not None:
        # At most one open episode.
        return snapshot, []

    episode = AlarmEpisode(
        episode_id=snapshot.episodes_started + 1,
        started_at=reading.received_at,
        trigger_reading=reading,
        trigger_status=status,
        duration_seconds=settings.alarm_duration_seconds,
    )
    next_snapshot = AlarmSnapshot(
        state=AlarmState.ACTIVE,
        episode=episode,
        episodes_started=episode.episode_id,
    )
    effects = [
        PresentAlert(ALERT_TITLE, alert_body(reading, status, settings)),
        StartTimer(episode.episode_id, episode.duration_seconds),
    ]
    return next_snapshot, effects


def on_timer_expired(snapshot: AlarmSnapshot, episode_id: int) -> Transition:
    # A late expiry for an episode that was already muted is ignored.
    if snapshot.episode is None or snapshot.episode.episode_id != episode_id:
        return snapshot, []
    return replace(snapshot, state=AlarmState.STANDBY, episode=None), [StopAlert(episode_id)]


def on_mute(snapshot: AlarmSnapshot) -> Transition:
    if snapshot.episode is None:
        return snapshot, []
    episode_id = snapshot.episode.episode_id
    return (replace(snapshot, state=AlarmState.STANDBY, episode=None),
            [CancelTimer(episode_id), StopAlert(episode_id)])


class AlarmController:
    """
    Executes alarm transitions.

    `settings_provider` is called on every evaluation so threshold and enable
    edits apply immediately. The auto-stop duration is fixed when the episode
    opens.
    """

    def __init__(self, presenter, scheduler, settings_provider: Callable,
                 on_change: Optional[Callable[[AlarmSnapshot], None]] = None):
        self._presenter = presenter
        self._scheduler = scheduler
        self._settings_provider = settings_provider
        self._on_change = on_change
        self._snapshot = AlarmSnapshot()
        self._timer = None

    @property
    def snapshot(self) -> AlarmSnapshot:
        return self._snapshot

    @property
    def state(self) -> AlarmState:
        return self._snapshot.state

    def handle_reading(self, reading: Reading, status: Status) -> None:
        self._apply(on_reading(self._snapshot, reading, status, self._settings_provider()))

    def mute(self) -> None:
        if self._snapshot.episode is None:
            logger.debug("Mute requested with no active alarm, nothing to do.")
        self._apply(on_mute(self._snapshot))

    def _timer_expired(self, episode_id: int) -> None:
        logger.info(f"Alarm auto-stop timer expired for episode {episode_id}.")
        self._apply(on_timer_expired(self._snapshot, episode_id))

    def _apply(self, transition: Transition) -> None:
        next_snapshot, effects = transition
        opens_episode = any(isinstance(effect, StartTimer) for effect in effects)
        if opens_episode and self._timer is not None and self._timer.active:
            message = (f"Alarm timer already running while opening episode {next_snapshot.episode.episode_id}; "
                       f"keeping the existing episode.")
            logger.error(message)
            if __debug__:
                raise InvariantViolation(message)
            return

        changed = next_snapshot != self._snapshot
        previous = self._snapshot
        self._snapshot = next_snapshot
        for effect in effects:
            self._perform(effect)
        if next_snapshot.episode is None:
            self._timer = None
        if changed:
            logger.info(f"Alarm state: {previous.state.value} -> {next_snapshot.state.value}")
            if self._on_change is not None:
                self._on_change(next_snapshot)

    def _perform(self, effect) -> None:
        if isinstance(effect, PresentAlert):
            logger.warning(f"ALARM: {effect.body}")
            try:
                self._presenter.present(effect.title, effect.body)
            except Exception as e:
                logger.error(f"Alert presenter failed: {e}", exc_info=True)
        elif isinstance(effect, StopAlert):
            logger.info(f"Alarm episode {effect.episode_id} stopped.")
            try:
                self._presenter.stop()
            except Exception as e:
                logger.error(f"Alert presenter failed to stop: {e}", exc_info=True)
        elif isinstance(effect, StartTimer):
            self._start_timer(effect)
        elif isinstance(effect, CancelTimer):
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        else:
            raise TypeError(f"Unknown alarm effect: {effect!r}")

    def _start_timer(self, effect: StartTimer) -> None:
        episode_id = effect.episode_id
        self._timer = self._scheduler.call_later(
            effect.seconds, lambda: self._timer_expired(episode_id), name=f"alarm-{episode_id}")
        logger.info(f"Alarm episode {episode_id} will auto-stop in {effect.seconds}s.")
