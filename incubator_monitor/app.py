import argparse
import os
import signal
import sys
import threading

from PyQt5.QtCore import QCoreApplication, QTimer

from incubator_monitor.config import SECRETS_FILE_PATH, load_broker_config
from incubator_monitor.console import ConsoleCommandReader
from incubator_monitor.constants import APP_ROOT_DIR
from incubator_monitor.controller import MonitorController
from incubator_monitor.exceptions import ConfigurationError
from incubator_monitor.history import HistoryBuffer
from incubator_monitor.logging import logger, setup_data_logging, setup_logging
from incubator_monitor.mqtt_utils import ConnectionManager
from incubator_monitor.presenters import CompositeAlertPresenter, LogAlertPresenter, SoundAlertPresenter
from incubator_monitor.scheduling import QtScheduler
from incubator_monitor.settings import SettingsStore
from incubator_monitor.storage import JsonFileKeyValueStore


def build_controller(config, home=APP_ROOT_DIR, sound=True):
    settings_store = SettingsStore(JsonFileKeyValueStore(os.path.join(home, "settings.json")))
    settings_store.load()
    history = HistoryBuffer(kv_store=JsonFileKeyValueStore(os.path.join(home, "history.json")))

    presenters = [LogAlertPresenter()]
    if sound:
        presenters.append(SoundAlertPresenter(lambda: settings_store.current))
    presenter = CompositeAlertPresenter(*presenters)

    return MonitorController(
        connection=ConnectionManager(config),
        settings_store=settings_store,
        history=history,
        presenter=presenter,
        scheduler=QtScheduler(),
        data_timeout=config.data_timeout,
    )


def parse_args(argv):
    parser = argparse.ArgumentParser(description="Incubator temperature monitor")
    parser.add_argument("--secrets", default=SECRETS_FILE_PATH, help="path to secrets.json")
    parser.add_argument("--home", default=APP_ROOT_DIR, help="directory for settings, history and logs")
    parser.add_argument("--no-sound", action="store_true", help="log alerts only")
    parser.add_argument("--no-console", action="store_true", help="do not read commands from stdin")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(sys.argv[1:] if argv is None else argv)
    setup_logging(os.path.join(args.home, "log"))
    setup_data_logging(os.path.join(args.home, "log"))
    logger.info("Application starting...")

    app = QCoreApplication(sys.argv[:1])
    try:
        config = load_broker_config(args.secrets)
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        return 1

    controller = build_controller(config, home=args.home, sound=not args.no_sound)
    controller.quitRequested.connect(app.quit)
    controller.output.connect(lambda text: print(text, flush=True))

    if not args.no_console:
        reader = ConsoleCommandReader()
        reader.commandReceived.connect(controller.handle_command)
        # Blocking stdin reads must not keep the process alive on exit.
        threading.Thread(target=reader.run, name="console-reader", daemon=True).start()

    # --- Graceful shutdown on Ctrl+C ---
    def sigint_handler(*args):
        logger.info("Ctrl+C (SIGINT) pressed. Shutting down...")
        app.quit()

    signal.signal(signal.SIGINT, sigint_handler)
    # Python signal handlers only run when the interpreter gets control back.
    wakeup_timer = QTimer()
    wakeup_timer.timeout.connect(lambda: None)
    wakeup_timer.start(500)

    controller.start()
    exit_code = app.exec_()
    logger.info(f"Application event loop finished with code {exit_code}. Performing graceful shutdown...")
    controller.stop()
    return exit_code


if __name__ == '__main__':
    sys.exit(main())
