"""Run a command per HTTP request and stream its output back.

Can run standalone:
    python -m long_cloud_run COMMAND [ARGS...]
"""

from long_cloud_run.config import Config, PollSettings
from long_cloud_run.models import CommandSpec, Outcome, OutcomeKind, RunContext
from long_cloud_run.runner import CommandSupervisor, OutputMultiplexer
from long_cloud_run.server import create_app

__all__ = [
    "CommandSpec",
    "CommandSupervisor",
    "Config",
    "Outcome",
    "OutcomeKind",
    "OutputMultiplexer",
    "PollSettings",
    "RunContext",
    "create_app",
]
