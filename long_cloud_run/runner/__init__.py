"""Command runner: supervise one subprocess per HTTP invocation.

  - CommandSupervisor: launch, deadline, cancellation and outcome
  - OutputMultiplexer: merge stdout/stderr into ordered line events
  - launch / exit_code: process layer bound to a cancellation event
"""

from long_cloud_run.runner.multiplexer import OutputMultiplexer
from long_cloud_run.runner.process import BoundProcess, exit_code, launch
from long_cloud_run.runner.supervisor import CommandSupervisor
from long_cloud_run.runner.ticker import DeadlineTicker, ExponentialBackoff

__all__ = [
    "BoundProcess",
    "CommandSupervisor",
    "DeadlineTicker",
    "ExponentialBackoff",
    "OutputMultiplexer",
    "exit_code",
    "launch",
]
