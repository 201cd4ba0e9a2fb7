"""Host side of the sandbox: verify a package, spawn its execution context, correlate runs."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from enum import Enum
from typing import Any
from uuid import uuid4

from agentpack.codec import ExtractedPackage, extract_package, verify_extracted
from agentpack.config import Settings, get_settings
from agentpack.errors import AgentRunError, FormatError, IntegrityError, SandboxError
from agentpack.sandbox.worker import STREAM_LIMIT

logger = logging.getLogger(__name__)

WORKER_MODULE = "agentpack.sandbox.worker"


class SessionState(str, Enum):
    LOADING = "loading"
    VERIFYING = "verifying"
    INITIALIZING = "initializing"
    READY = "ready"
    RUNNING = "running"
    ERROR = "error"
    CLOSED = "closed"


class SandboxSession:
    """One execution context for one package.

    ``run`` calls may overlap; each carries its own id and resolves
    independently. Calls made while the context is still starting wait for
    readiness instead of being dropped.
    """

    def __init__(self, document: str, *, settings: Settings | None = None) -> None:
        self._document = document
        self._settings = settings or get_settings()
        self.state = SessionState.LOADING
        self.package: ExtractedPackage | None = None
        self.error: str | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[None] | None = None
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._in_flight = 0

    @property
    def pending_calls(self) -> int:
        return len(self._pending)

    async def __aenter__(self) -> SandboxSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _fail(self, message: str) -> None:
        self.state = SessionState.ERROR
        self.error = message

    async def start(self) -> None:
        if self._ready is not None:
            raise SandboxError("session already started")
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()

        self.state = SessionState.LOADING
        try:
            package = extract_package(self._document)
        except FormatError as exc:
            self._fail(str(exc))
            self._fail_pending(exc)
            raise

        self.state = SessionState.VERIFYING
        if not verify_extracted(package):
            exc = IntegrityError("Integrity check failed")
            self._fail(str(exc))
            self._fail_pending(exc)
            raise exc
        self.package = package

        self.state = SessionState.INITIALIZING
        python = self._settings.sandbox_python or sys.executable
        try:
            self._process = await asyncio.create_subprocess_exec(
                python,
                "-m",
                WORKER_MODULE,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                env=dict(os.environ),
                limit=STREAM_LIMIT,
            )
        except OSError as exc:
            self._fail(str(exc))
            error = SandboxError(f"failed to start execution context: {exc}")
            self._fail_pending(error)
            raise error from exc
        self._reader_task = asyncio.create_task(self._read_loop())

        try:
            await self._send(
                {
                    "method": "load",
                    "manifest": package.manifest,
                    "code": package.code,
                    "memory": package.memory,
                }
            )
            await asyncio.wait_for(
                asyncio.shield(self._ready), self._settings.sandbox_ready_timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            await self._teardown("execution context did not become ready")
            raise SandboxError("execution context did not become ready in time") from exc
        except SandboxError:
            await self._teardown(self.error or "execution context failed to load")
            raise
        logger.info("Sandbox ready for agent %s", package.manifest.get("id"))

    async def _send(self, message: dict[str, Any]) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise SandboxError("execution context is not running")
        data = json.dumps(message, separators=(",", ":")).encode("utf-8") + b"\n"
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise SandboxError("execution context closed its input") from exc

    async def _read_loop(self) -> None:
        process = self._process
        assert process is not None and process.stdout is not None
        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                try:
                    message = json.loads(line.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    logger.warning("Ignoring malformed message from execution context")
                    continue
                if isinstance(message, dict):
                    self._dispatch(message)
        except (ValueError, asyncio.LimitOverrunError) as exc:
            # readline() raises ValueError once a line outgrows STREAM_LIMIT.
            self._fail(f"execution context sent a message over the {STREAM_LIMIT} byte limit")
            logger.error("%s (%s)", self.error, exc)
            if process.returncode is None:
                process.kill()

        returncode = await process.wait()
        if self.state is not SessionState.CLOSED:
            self._fail(self.error or f"execution context exited with code {returncode}")
        self._fail_pending(SandboxError(self.error or "execution context exited"))

    def _dispatch(self, message: dict[str, Any]) -> None:
        assert self._ready is not None
        if message.get("ready") is True:
            if self._ready.done():
                logger.warning("Ignoring repeated ready signal")
            else:
                self.state = SessionState.READY
                self._ready.set_result(None)
            return
        if "fatal" in message:
            self.error = str(message["fatal"])
            if not self._ready.done():
                self._ready.set_exception(SandboxError(self.error))
            return
        call_id = message.get("id")
        future = self._pending.get(call_id) if isinstance(call_id, str) else None
        if future is None:
            logger.warning("Ignoring reply for unknown call id %r", call_id)
            return
        if not future.done():
            future.set_result(message)

    def _fail_pending(self, exc: Exception) -> None:
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(exc)
            # Marks the exception retrieved; later awaiters still receive it.
            self._ready.exception()
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)

    async def run(self, input_value: Any = None) -> Any:
        if self._ready is None:
            raise SandboxError("session not started")
        await asyncio.shield(self._ready)
        if self.state not in (SessionState.READY, SessionState.RUNNING):
            raise SandboxError(f"session is {self.state.value}")

        call_id = uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future
        self._in_flight += 1
        self.state = SessionState.RUNNING
        try:
            await self._send({"method": "run", "id": call_id, "input": input_value})
            reply = await asyncio.wait_for(future, self._settings.sandbox_run_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise SandboxError(f"run {call_id} timed out") from exc
        finally:
            self._pending.pop(call_id, None)
            self._in_flight -= 1
            if self.state is SessionState.RUNNING and self._in_flight == 0:
                self.state = SessionState.READY

        if "error" in reply:
            raise AgentRunError(str(reply["error"]), call_id=call_id)
        return reply.get("result")

    async def _teardown(self, reason: str) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            try:
                await asyncio.wait_for(
                    process.wait(), self._settings.sandbox_shutdown_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning("Execution context did not exit; killing it")
                process.kill()
                await process.wait()
        if self._reader_task is not None:
            await asyncio.gather(self._reader_task, return_exceptions=True)
        self._fail_pending(SandboxError(reason))

    async def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        failed = self.state is SessionState.ERROR
        if not failed:
            self.state = SessionState.CLOSED
        await self._teardown("session closed")
        if not failed:
            self.state = SessionState.CLOSED
