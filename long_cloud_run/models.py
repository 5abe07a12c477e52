from __future__ import annotations

import asyncio
import base64
import binascii
import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CommandSpec: what to run, fixed at deployment time
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CommandSpec:
    name: str
    args: tuple[str, ...] = ()
    show_output: bool = True          # surface lines to the caller, not just the log
    can_fail: bool = False            # any failure is reported as success
    allowed_exit_codes: frozenset[int] = frozenset({0})

    @property
    def argv(self) -> list[str]:
        return [self.name, *self.args]


# ---------------------------------------------------------------------------
# Events: everything the supervisor loop reacts to arrives on one queue
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OutputLine:
    text: str
    stream: str = "stdout"


@dataclass(frozen=True)
class DeadlineTick:
    elapsed: float
    expired: bool = False  # max elapsed time reached, no more ticks follow


@dataclass(frozen=True)
class ProcessExit:
    returncode: int | None
    error: BaseException | None = None  # set when waiting on the process failed


SupervisorEvent = OutputLine | DeadlineTick | ProcessExit


# ---------------------------------------------------------------------------
# Outcome: terminal classification of one run
# ---------------------------------------------------------------------------

class OutcomeKind(str, enum.Enum):
    SUCCESS = "success"
    ALLOWED_EXIT_CODE = "allowed_exit_code"
    IGNORED_FAILURE = "ignored_failure"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


_OK_KINDS = frozenset({
    OutcomeKind.SUCCESS,
    OutcomeKind.ALLOWED_EXIT_CODE,
    OutcomeKind.IGNORED_FAILURE,
})


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    message: str
    exit_code: int | None = None
    error: BaseException | None = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.kind in _OK_KINDS


# ---------------------------------------------------------------------------
# Pub/Sub push envelope
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PubSubMessage:
    data: bytes = b""
    message_id: str = ""
    subscription: str = ""

    @classmethod
    def from_json(cls, body: bytes | str) -> PubSubMessage:
        """Parse a push delivery body.

        Unknown fields are ignored and missing ones default to empty.
        Raises ValueError when the body is not JSON, a field has the wrong
        type, or ``message.data`` is not valid base64.
        """
        try:
            payload: Any = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ValueError(f"invalid JSON: {exc}") from exc

        if payload is None:
            return cls()
        if not isinstance(payload, dict):
            raise ValueError("expected a JSON object")

        message = payload.get("message") or {}
        if not isinstance(message, dict):
            raise ValueError("'message' must be an object")

        raw_data = message.get("data") or ""
        message_id = message.get("id") or ""
        subscription = payload.get("subscription") or ""
        for key, value in (("message.data", raw_data), ("message.id", message_id),
                           ("subscription", subscription)):
            if not isinstance(value, str):
                raise ValueError(f"'{key}' must be a string")

        try:
            data = base64.b64decode(raw_data, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"'message.data' is not base64: {exc}") from exc

        return cls(data=data, message_id=message_id, subscription=subscription)


# ---------------------------------------------------------------------------
# RunContext: one invocation bound to one HTTP exchange
# ---------------------------------------------------------------------------

class ProgressSink(Protocol):
    async def write(self, data: str) -> None: ...

    async def flush(self) -> None: ...


@dataclass
class RunContext:
    sink: ProgressSink
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    message: PubSubMessage | None = None

    async def progress(self, line: str) -> None:
        """Log *line* and push it to the caller right away.

        Once the caller is gone nothing more is written to the sink.
        """
        log.info("%s", line)
        if self.cancelled.is_set():
            return
        await self.sink.write(line + "\n")
        await self.sink.flush()
