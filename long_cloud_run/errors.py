"""Error kinds raised or recorded while supervising a command."""

from __future__ import annotations


class CommandError(Exception):
    """Base class for everything that can go wrong with a run."""


class SetupError(CommandError):
    """The process never ran: launching it or wiring its pipes failed."""


class RuntimeTerminationError(CommandError):
    """The process was killed on purpose (deadline or caller disconnect)."""


class ExitStatusError(CommandError):
    """The process exited with a status that is not allowed."""

    def __init__(self, code: int) -> None:
        super().__init__(f"exit status {code}")
        self.code = code


class UnclassifiedWaitError(CommandError):
    """No usable exit status: killed by a signal or the wait itself failed."""
