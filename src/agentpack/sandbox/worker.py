"""Execution-context process: ``python -m agentpack.sandbox.worker``.

Speaks JSON lines with the host. stdin carries one ``load`` message followed
by ``run`` calls; stdout carries ``{"ready": true}`` (or ``{"fatal": ...}``)
and one reply per call. Anything the agent prints goes to stderr.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import IO, Any

from agentpack.config import get_settings
from agentpack.errors import SandboxError
from agentpack.logging import bind_context, configure_logging
from agentpack.sandbox.runtime import AgentRuntime

logger = logging.getLogger(__name__)

STREAM_LIMIT = 16 * 1024 * 1024


class _Channel:
    def __init__(self, out: IO[str]) -> None:
        self._out = out

    def send(self, message: dict[str, Any]) -> None:
        # Single write + flush; the event loop never interleaves two sends.
        self._out.write(json.dumps(message, separators=(",", ":")) + "\n")
        self._out.flush()


async def _open_stdin() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return reader


def _decode(line: bytes) -> dict[str, Any] | None:
    try:
        message = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Ignoring malformed message from host")
        return None
    if not isinstance(message, dict):
        logger.warning("Ignoring non-object message from host")
        return None
    return message


async def serve(reader: asyncio.StreamReader, channel: _Channel) -> int:
    first = await reader.readline()
    load = _decode(first) if first else None
    if load is None or load.get("method") != "load" or not isinstance(load.get("manifest"), dict):
        channel.send({"fatal": "expected a load message"})
        return 2

    try:
        runtime = AgentRuntime(load["manifest"], str(load.get("code", "")), load.get("memory"))
    except SandboxError as exc:
        channel.send({"fatal": str(exc)})
        return 1

    bind_context(agent_id=load["manifest"].get("id"))
    channel.send({"ready": True})

    tasks: set[asyncio.Task[None]] = set()

    async def dispatch(message: dict[str, Any]) -> None:
        reply = await runtime.handle(message)
        if len(json.dumps(reply, separators=(",", ":"))) >= STREAM_LIMIT:
            logger.warning("Reply for run %s is over the message size limit", reply.get("id"))
            reply = {"id": reply.get("id"), "error": "agent result exceeds the message size limit"}
        channel.send(reply)

    while True:
        line = await reader.readline()
        if not line:
            break
        message = _decode(line)
        if message is None:
            continue
        method = message.get("method")
        if method == "run":
            task = asyncio.create_task(dispatch(message))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
        elif method == "shutdown":
            break
        else:
            logger.warning("Ignoring unknown method from host: %s", method)

    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    await runtime.close()
    return 0


async def _main() -> int:
    protocol_out = sys.stdout
    sys.stdout = sys.stderr
    reader = await _open_stdin()
    return await serve(reader, _Channel(protocol_out))


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, env=settings.app_env)
    bind_context(component="sandbox.worker")
    sys.exit(asyncio.run(_main()))


if __name__ == "__main__":
    main()
