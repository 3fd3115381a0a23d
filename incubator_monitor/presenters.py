import os
import wave

from PyQt5.QtCore import QObject, QUrl
from PyQt5.QtMultimedia import QSoundEffect

from incubator_monitor.exceptions import PresentationError
from incubator_monitor.logging import logger

# Shipped with the package, used when no custom alert media is configured.
DEFAULT_ALARM_FILE_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "alarm.wav")


class AlertPresenter:
    """Presents an alert to the user. Fire-and-forget: callers log failures and move on."""

    def present(self, title, body):
        raise NotImplementedError

    def stop(self):
        raise NotImplementedError


class LogAlertPresenter(AlertPresenter):
    def present(self, title, body):
        logger.warning(f"{title}: {body}")

    def stop(self):
        logger.info("Alert presentation stopped.")


class CompositeAlertPresenter(AlertPresenter):
    """Fans out to several presenters; one failing does not prevent the others."""

    def __init__(self, *presenters):
        self.presenters = list(presenters)

    def present(self, title, body):
        self._each("present", title, body)

    def stop(self):
        self._each("stop")

    def _each(self, method, *args):
        errors = []
        for presenter in self.presenters:
            try:
                getattr(presenter, method)(*args)
            except Exception as e:
                logger.error(f"{type(presenter).__name__}.{method} failed: {e}", exc_info=True)
                errors.append(e)
        if errors and len(errors) == len(self.presenters):
            raise PresentationError(f"All presenters failed to {method}")


def check_wav_file(path):
    """Raises PresentationError unless `path` is a PCM WAV file QSoundEffect can play."""
    if not os.path.exists(path):
        raise PresentationError(f"Alarm sound file not found: {path}")
    try:
        with wave.open(path, 'rb') as wav_file:
            frames = wav_file.getnframes()
    except (wave.Error, EOFError, OSError) as e:
        raise PresentationError(f"Alarm sound file is not a valid WAV file: {path} ({e})") from e
    if frames == 0:
        raise PresentationError(f"Alarm sound file is empty: {path}")


class SoundAlertPresenter(QObject, AlertPresenter):
    """
    Loops an alarm sound while an alert is presented.

    The media comes from the `custom_alert_media_ref` setting, read on every
    present() call, or falls back to the alarm.wav shipped with the package.
    The file is checked before it is handed to QSoundEffect, which loads it
    asynchronously; a later load failure is reported through statusChanged.
    """

    def __init__(self, settings_provider, parent=None):
        super().__init__(parent)
        self._settings_provider = settings_provider
        self.sound_effect = QSoundEffect(self)
        self.sound_effect.setVolume(0.8)
        self.sound_effect.statusChanged.connect(self._on_status_changed)
        self._loaded_path = None

    def _media_path(self):
        settings = self._settings_provider()
        return os.path.abspath(settings.custom_alert_media_ref or DEFAULT_ALARM_FILE_PATH)

    def present(self, title, body):
        path = self._media_path()
        check_wav_file(path)
        if path != self._loaded_path:
            self.sound_effect.setSource(QUrl.fromLocalFile(path))
            self._loaded_path = path
        if self.sound_effect.status() == QSoundEffect.Error:
            raise PresentationError(f"Could not load alarm sound file: {path}")

        self.sound_effect.setLoopCount(QSoundEffect.Infinite)
        self.sound_effect.play()
        if self._settings_provider().vibrate_enabled:
            logger.debug("Vibration requested, not available on this platform.")
        logger.info(f"Playing alarm sound '{path}' for: {title}")

    def stop(self):
        if self.sound_effect.isPlaying():
            self.sound_effect.stop()

    def _on_status_changed(self):
        if self.sound_effect.status() == QSoundEffect.Error:
            logger.error(f"Could not load alarm sound file: {self._loaded_path}")
