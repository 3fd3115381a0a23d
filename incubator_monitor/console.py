import sys
from dataclasses import dataclass
from typing import Tuple

from PyQt5.QtCore import QObject, pyqtSignal

from incubator_monitor.logging import logger

COMMANDS = {
    "mute": "stop the active alarm",
    "toggle": "toggle the relay",
    "status": "print connection, alarm and relay state",
    "history": "print the recent readings",
    "clear-history": "forget the recorded readings",
    "reconnect": "drop the MQTT session and start a new one",
    "set": "set <field> <value>: change a setting",
    "help": "list commands",
    "quit": "exit",
}


@dataclass(frozen=True)
class Command:
    name: str
    args: Tuple[str, ...] = ()


class CommandError(ValueError):
    pass


def parse_command(line) -> Command:
    parts = line.strip().split()
    if not parts:
        raise CommandError("Empty command")
    name, args = parts[0].lower(), tuple(parts[1:])
    if name not in COMMANDS:
        raise CommandError(f"Unknown command '{name}'. Type 'help' for the list.")
    if name == "set":
        if len(args) < 1:
            raise CommandError("Usage: set <field> <value>")
        # Media paths may contain spaces.
        args = (args[0], " ".join(args[1:]))
    elif args:
        raise CommandError(f"'{name}' takes no arguments")
    return Command(name, args)


class ConsoleCommandReader(QObject):
    """
    Reads commands from stdin in a worker thread.

    Lines are only emitted as signals; the controller handles them on the main
    event loop.
    """
    commandReceived = pyqtSignal(str)
    finished = pyqtSignal()

    def __init__(self, stream=None):
        super().__init__()
        self.stream = stream or sys.stdin

    def run(self):
        logger.debug("Console command reader started.")
        for line in self.stream:
            line = line.strip()
            if line:
                self.commandReceived.emit(line)
        logger.debug("Console input closed.")
        self.finished.emit()
