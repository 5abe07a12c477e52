"""HTTP trigger: one request runs the configured command once.

The response is committed as ``200`` with chunked transfer encoding
before the command starts, so a failed run cannot change the status code.
Failures are reported through the last progress line and the
``on_failure`` hook (the entry point uses it to exit the host process).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping

from starlette.applications import Starlette
from starlette.requests import ClientDisconnect, Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route
from starlette.types import Message, Receive, Scope, Send

from .config import Config
from .models import CommandSpec, Outcome, PubSubMessage, RunContext
from .runner import CommandSupervisor

log = logging.getLogger(__name__)

FailureHook = Callable[[Outcome], None]


class ChunkedSink:
    """Progress sink writing straight to the ASGI ``send`` channel.

    ``write`` buffers, ``flush`` sends one body chunk.  A failing send
    means the client is gone: the run is cancelled and later writes are
    dropped.
    """

    def __init__(self, send: Send, cancelled: asyncio.Event) -> None:
        self._send = send
        self._cancelled = cancelled
        self._buffer: list[str] = []

    async def write(self, data: str) -> None:
        self._buffer.append(data)

    async def flush(self) -> None:
        if not self._buffer:
            return
        chunk = "".join(self._buffer).encode("utf-8")
        self._buffer.clear()
        if self._cancelled.is_set():
            return
        try:
            await self._send({"type": "http.response.body", "body": chunk, "more_body": True})
        except OSError:
            log.info("Client closed connection, command terminating.")
            self._cancelled.set()


class CommandStreamResponse(Response):
    """Streams the progress of one supervised command run."""

    media_type = "text/plain"

    def __init__(
        self,
        command: CommandSpec,
        config: Config,
        message: PubSubMessage | None = None,
        on_failure: FailureHook | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.command = command
        self.config = config
        self.message = message
        self.on_failure = on_failure
        self.outcome: Outcome | None = None
        self.status_code = 200
        self.background = None
        self.init_headers({"transfer-encoding": "chunked", **(headers or {})})

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        cancelled = asyncio.Event()
        await send({
            "type": "http.response.start",
            "status": self.status_code,
            "headers": self.raw_headers,
        })

        context = RunContext(
            sink=ChunkedSink(send, cancelled),
            cancelled=cancelled,
            message=self.message,
        )
        listener = asyncio.create_task(
            self._listen_for_disconnect(receive, cancelled), name="disconnect-listener",
        )
        try:
            self.outcome = await CommandSupervisor(
                self.command,
                context,
                self.config.poll,
                drain_timeout=self.config.drain_timeout,
            ).run()
        finally:
            listener.cancel()

        if not cancelled.is_set():
            try:
                await send({"type": "http.response.body", "body": b"", "more_body": False})
            except OSError:
                log.info("Client closed connection before the response was completed")

        if not self.outcome.ok:
            log.error(self.outcome.message)
            if self.on_failure is not None:
                self.on_failure(self.outcome)

    @staticmethod
    async def _listen_for_disconnect(receive: Receive, cancelled: asyncio.Event) -> None:
        while True:
            message: Message = await receive()
            if message["type"] == "http.disconnect":
                log.info("Client closed connection, command terminating.")
                cancelled.set()
                return


def create_app(
    command: CommandSpec,
    config: Config | None = None,
    on_failure: FailureHook | None = None,
) -> Starlette:
    """Create the Starlette app that runs *command* once per request."""

    cfg = config or Config()

    async def trigger(request: Request) -> Response:
        try:
            body = await request.body()
        except ClientDisconnect:
            log.warning("Failed to read request body: client disconnected")
            return PlainTextResponse("Bad Request", status_code=400)

        message: PubSubMessage | None = None
        if body:
            try:
                message = PubSubMessage.from_json(body)
            except ValueError as exc:
                log.warning("Failed to parse JSON body: %s", exc)
                return PlainTextResponse("Bad Request", status_code=400)
            log.info(
                "Received Pub/Sub message %s from %s (%d bytes of data)",
                message.message_id or "<no id>",
                message.subscription or "<no subscription>",
                len(message.data),
            )
        else:
            log.info("Not a Pub/Sub invocation (no request body).")

        return CommandStreamResponse(command, cfg, message=message, on_failure=on_failure)

    return Starlette(routes=[Route("/", trigger, methods=["GET", "POST"])])
