import pytest

from conftest import RecordingPresenter
from incubator_monitor.exceptions import PresentationError
from incubator_monitor.presenters import (
    DEFAULT_ALARM_FILE_PATH, CompositeAlertPresenter, LogAlertPresenter, SoundAlertPresenter, check_wav_file)
from incubator_monitor.settings import Settings


def test_composite_reaches_every_presenter_despite_failures() -> None:
    broken, working = RecordingPresenter(fail=True), RecordingPresenter()
    presenter = CompositeAlertPresenter(broken, working)

    presenter.present("Incubator Alert", "Temperature: 70.0°C (above 65.0°C)")
    presenter.stop()

    assert working.presented == [("Incubator Alert", "Temperature: 70.0°C (above 65.0°C)")]
    assert working.stops == 1
    assert broken.stops == 1


def test_composite_raises_when_all_presenters_fail() -> None:
    presenter = CompositeAlertPresenter(RecordingPresenter(fail=True), RecordingPresenter(fail=True))
    with pytest.raises(PresentationError):
        presenter.present("t", "b")


def test_log_presenter_writes_warning(caplog) -> None:
    with caplog.at_level("WARNING", logger="IncubatorMonitorApp"):
        LogAlertPresenter().present("Incubator Alert", "Temperature: 10.0°C (below 25.0°C)")
    assert "Temperature: 10.0°C (below 25.0°C)" in caplog.text


def test_default_alarm_sound_is_shipped() -> None:
    check_wav_file(DEFAULT_ALARM_FILE_PATH)


def test_sound_presenter_rejects_missing_media(tmp_path) -> None:
    settings = Settings(custom_alert_media_ref=str(tmp_path / "missing.wav"))
    presenter = SoundAlertPresenter(lambda: settings)

    with pytest.raises(PresentationError, match="not found"):
        presenter.present("Incubator Alert", "body")
    presenter.stop()


@pytest.mark.parametrize("content", [b"this is not audio", b"", b"RIFF\x00\x00\x00\x00WAVE"])
def test_sound_presenter_rejects_media_that_is_not_wav(tmp_path, content) -> None:
    path = tmp_path / "alarm.wav"
    path.write_bytes(content)
    settings = Settings(custom_alert_media_ref=str(path))
    presenter = SoundAlertPresenter(lambda: settings)

    with pytest.raises(PresentationError, match="not a valid WAV"):
        presenter.present("Incubator Alert", "body")


def test_composite_reports_failure_when_only_presenter_has_bad_media(tmp_path) -> None:
    path = tmp_path / "alarm.wav"
    path.write_bytes(b"garbage" * 100)
    settings = Settings(custom_alert_media_ref=str(path))

    with pytest.raises(PresentationError):
        CompositeAlertPresenter(SoundAlertPresenter(lambda: settings)).present("Incubator Alert", "body")
