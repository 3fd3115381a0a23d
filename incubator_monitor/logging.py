import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from incubator_monitor.constants import APP_ROOT_DIR, CSV_DATA_HEADERS


class CsvRotatingFileHandler(RotatingFileHandler):
    """
    A RotatingFileHandler that writes a header to new files.
    """
    def __init__(self, filename, *args, header=None, **kwargs):
        self.header = header
        # The base class opens the file in its __init__, so the header decision
        # has to be made before that.
        write_header = not os.path.exists(filename) or os.path.getsize(filename) == 0

        super().__init__(filename, *args, **kwargs)

        if write_header and self.header:
            self.stream.write(self.header + '\n')
            self.stream.flush()

    def doRollover(self):
        super().doRollover()
        # After rollover, the new file (self.baseFilename) is empty.
        if self.header:
            self.stream.write(self.header + '\n')
            self.stream.flush()


def _ensure_log_dir(log_dir):
    """Creates the log directory. Returns (usable_dir, error_message_or_None)."""
    if os.path.exists(log_dir):
        return log_dir, None
    try:
        os.makedirs(log_dir)
        return log_dir, None
    except OSError as e:
        return APP_ROOT_DIR, f"CRITICAL ERROR: Could not create log directory {log_dir}: {e}"


def setup_data_logging(log_dir=None):
    """Sets up a separate logger for the readings CSV."""
    if data_logger.handlers:
        return
    data_logger.setLevel(logging.INFO)

    log_dir, _ = _ensure_log_dir(log_dir or os.path.join(APP_ROOT_DIR, "log"))
    log_file = os.path.join(log_dir, "incubator_readings.csv")

    file_handler = CsvRotatingFileHandler(
        log_file,
        mode='a',
        maxBytes=100 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8',
        header=";".join(CSV_DATA_HEADERS)
    )
    # Lines are formatted by the caller.
    file_handler.setFormatter(logging.Formatter('%(message)s'))
    data_logger.addHandler(file_handler)

    # Data lines must not reach the console.
    data_logger.propagate = False
    logger.info("Data logging to CSV setup complete.")


def setup_logging(log_dir=None):
    if logger.handlers:
        return
    logger.setLevel(logging.DEBUG)

    log_dir, log_dir_error = _ensure_log_dir(log_dir or os.path.join(APP_ROOT_DIR, "log"))
    log_file = os.path.join(log_dir, "incubator_monitor.log")

    # Rotate log file when it reaches 100MB, keep 5 backup logs
    file_handler = RotatingFileHandler(log_file, maxBytes=100 * 1024 * 1024, backupCount=5, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s')
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    logger.info("Logging setup complete.")
    if log_dir_error:
        logger.error(log_dir_error)


logger = logging.getLogger("IncubatorMonitorApp")
data_logger = logging.getLogger("IncubatorMonitorDataLogger")
