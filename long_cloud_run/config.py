from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from .durations import parse_duration
from .models import CommandSpec

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def parse_exit_codes(raw: str) -> frozenset[int]:
    """Parse a comma separated list of exit codes ("0,3,4")."""
    try:
        codes = frozenset(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        raise ValueError(f"invalid exit code list: {raw!r}") from None
    if not codes:
        raise ValueError("at least one allowed exit code is required")
    return codes


@dataclass(frozen=True)
class PollSettings:
    """Schedule of deadline ticks.

    Intervals start at ``initial_interval`` and grow by ``multiplier``
    (with ``randomization_factor`` jitter) up to ``max_interval``.  Once
    ``max_elapsed_time`` has passed the command is killed.
    """

    initial_interval: float = 5.0
    max_interval: float = 300.0
    max_elapsed_time: float = 3600.0
    multiplier: float = 1.5
    randomization_factor: float = 0.5

    def __post_init__(self) -> None:
        if self.initial_interval <= 0:
            raise ValueError("initial_interval must be positive")
        if self.max_interval < self.initial_interval:
            raise ValueError("max_interval must be >= initial_interval")
        if self.max_elapsed_time <= 0:
            raise ValueError("max_elapsed_time must be positive")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if not 0 <= self.randomization_factor < 1:
            raise ValueError("randomization_factor must be in [0, 1)")


@dataclass(frozen=True)
class Config:
    host: str = "0.0.0.0"
    port: int = 8080
    poll: PollSettings = field(default_factory=PollSettings)
    show_output: bool = True
    can_fail: bool = False
    allowed_exit_codes: frozenset[int] = frozenset({0})
    exit_on_failure: bool = True
    drain_timeout: float = 1.0
    log_level: str = "INFO"

    def command_spec(self, name: str, args: Sequence[str] = ()) -> CommandSpec:
        return CommandSpec(
            name=name,
            args=tuple(args),
            show_output=self.show_output,
            can_fail=self.can_fail,
            allowed_exit_codes=self.allowed_exit_codes,
        )

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        load_dotenv(env_path)

        poll = PollSettings(
            initial_interval=parse_duration(os.getenv("POLL_INTERVAL", "5s")),
            max_interval=parse_duration(os.getenv("MAX_POLL_INTERVAL", "5m")),
            max_elapsed_time=parse_duration(os.getenv("MAX_ELAPSED_TIME", "60m")),
        )

        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8080")),
            poll=poll,
            show_output=_env_bool("SHOW_OUTPUT", True),
            can_fail=_env_bool("CAN_FAIL", False),
            allowed_exit_codes=parse_exit_codes(os.getenv("ALLOWED_EXIT_CODES", "0")),
            exit_on_failure=_env_bool("EXIT_ON_FAILURE", True),
            drain_timeout=parse_duration(os.getenv("OUTPUT_DRAIN_TIMEOUT", "1s")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
