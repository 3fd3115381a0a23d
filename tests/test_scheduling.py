from PyQt5.QtTest import QTest

from conftest import RecordingPresenter, make_reading
from incubator_monitor.alarm import AlarmController
from incubator_monitor.constants import QTIMER_MAX_INTERVAL_MS, AlarmState, DurationUnit, Status
from incubator_monitor.scheduling import QtScheduler
from incubator_monitor.settings import Settings


def test_callback_runs_once_after_delay() -> None:
    scheduler = QtScheduler()
    calls = []
    handle = scheduler.call_later(0.01, lambda: calls.append("fired"), name="test")

    assert handle.active
    QTest.qWait(100)

    assert calls == ["fired"]
    assert handle.fired
    assert not handle.active


def test_cancelled_callback_never_runs() -> None:
    scheduler = QtScheduler()
    calls = []
    handle = scheduler.call_later(0.01, lambda: calls.append("fired"))

    assert handle.cancel() is True
    assert handle.cancel() is False
    QTest.qWait(100)

    assert calls == []
    assert not handle.fired


def test_cancel_after_firing_is_a_no_op() -> None:
    scheduler = QtScheduler()
    handle = scheduler.call_later(0, lambda: None)
    QTest.qWait(50)
    assert handle.cancel() is False


def test_delay_beyond_one_timer_interval_is_accepted() -> None:
    scheduler = QtScheduler()
    handle = scheduler.call_later(40000 * 60, lambda: None, name="long")

    assert handle.active
    assert handle._timer.interval() == QTIMER_MAX_INTERVAL_MS
    assert handle.cancel() is True


def test_long_delay_runs_as_consecutive_intervals(monkeypatch) -> None:
    monkeypatch.setattr("incubator_monitor.scheduling.QTIMER_MAX_INTERVAL_MS", 10)
    scheduler = QtScheduler()
    calls = []
    handle = scheduler.call_later(0.035, lambda: calls.append("fired"))

    QTest.qWait(15)
    assert calls == []
    assert handle.active

    QTest.qWait(300)
    assert calls == ["fired"]
    assert handle.fired


def test_alarm_with_very_long_duration_keeps_its_timer() -> None:
    settings = Settings(alarm_duration=40000, alarm_duration_unit=DurationUnit.MINUTES)
    presenter = RecordingPresenter()
    controller = AlarmController(presenter, QtScheduler(), lambda: settings)

    controller.handle_reading(make_reading(70.0), Status.HIGH)

    assert controller.state == AlarmState.ACTIVE
    assert controller._timer is not None and controller._timer.active
    controller.mute()
    assert controller.state == AlarmState.STANDBY
    assert presenter.stops == 1
