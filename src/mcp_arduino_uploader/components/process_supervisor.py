"""
Process supervision for toolchain invocations

Spawns a tool, relays its classified output to a sink while it runs, honours
abort requests and turns the way the process ended into an Outcome.
"""

import asyncio
import codecs
import logging
import os
import signal
import sys
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import psutil

from ..errors import ToolInvocationError, ToolSpawnError, UploaderError
from .output_classifier import (
    CLEAR_LINE,
    Sink,
    StreamClassifier,
    Tag,
    render,
    send_to_sink,
    tagged,
)

logger = logging.getLogger(__name__)


class OutcomeStatus(Enum):
    """Result states of a build or flash"""
    SUCCESS = "success"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    """Result of one build or flash; only failures carry a reason"""
    status: OutcomeStatus
    reason: str | None = None
    error: UploaderError | None = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(OutcomeStatus.SUCCESS)

    @classmethod
    def aborted(cls) -> "Outcome":
        return cls(OutcomeStatus.ABORTED)

    @classmethod
    def failed(cls, reason: str, error: UploaderError | None = None) -> "Outcome":
        return cls(OutcomeStatus.FAILED, reason, error or ToolInvocationError(reason))

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    def raise_for_status(self) -> None:
        """Raise the carried error if this outcome is a failure"""
        if self.status is OutcomeStatus.FAILED:
            raise self.error

    def __str__(self) -> str:
        if self.status is OutcomeStatus.FAILED:
            return f"Failed({self.reason})"
        return self.status.value.capitalize()


ExitResolver = Callable[[int], Awaitable[Outcome]]


class CancelToken:
    """One-shot abort flag; safe to set from any thread, never resets"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ProcessTerminator(Protocol):
    def terminate(self, process: asyncio.subprocess.Process) -> None:
        ...


class SignalTerminator:
    """
    Ask the process to stop with SIGTERM.

    The supervisor starts each tool as the leader of its own process group,
    so the signal goes to the whole group and also reaches the compilers and
    uploaders the tool has started.
    """

    def terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, signal.SIGTERM)
            else:
                process.terminate()
        except ProcessLookupError:
            logger.debug(f"Process {process.pid} already terminated")


class ProcessTreeTerminator:
    """Force-kill the process and every descendant, children first"""

    def terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            root = psutil.Process(process.pid)
            children = root.children(recursive=True)
        except psutil.NoSuchProcess:
            logger.debug(f"Process {process.pid} already terminated")
            return

        for proc in [*reversed(children), root]:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                logger.debug(f"Process {proc.pid} exited before it could be killed")


def default_terminator(platform: str | None = None) -> ProcessTerminator:
    """Windows has no graceful terminate signal, so kill the whole tree there"""
    platform = platform or sys.platform
    if platform == "win32":
        return ProcessTreeTerminator()
    return SignalTerminator()


class ProcessSupervisor:
    """Runs a single tool invocation to completion"""

    def __init__(
        self,
        token: CancelToken,
        terminator: ProcessTerminator | None = None,
        poll_interval: float = 0.1,
        chunk_size: int = 4096,
        drain_timeout: float = 0.5,
    ):
        self.token = token
        self.terminator = terminator or default_terminator()
        self.poll_interval = poll_interval
        self.chunk_size = chunk_size
        self.drain_timeout = drain_timeout

    async def run(
        self,
        executable: str,
        args: list[str],
        sink: Sink,
        resolve_exit: ExitResolver,
        stdout_classifier: StreamClassifier | None = None,
        stderr_classifier: StreamClassifier | None = None,
    ) -> Outcome:
        """
        Run `executable args...`, streaming classified output to `sink`.

        The outcome is resolved once the process itself has exited, even if
        processes it started still hold its output pipes. A process killed by
        a signal resolves Aborted; any exit code is handed to `resolve_exit`.
        The sink always receives a final clear line after the process has exited.
        """
        stdout_classifier = stdout_classifier or StreamClassifier()
        stderr_classifier = stderr_classifier or StreamClassifier()
        cmd_str = " ".join([executable, *args])
        logger.debug(f"Spawning: {cmd_str}")

        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                # Own process group, so a signal reaches the tools it starts too
                start_new_session=sys.platform != "win32",
            )
        except OSError as e:
            logger.error(f"Could not start '{executable}': {e}")
            reason = f"could not start {executable}: {e}"
            outcome = Outcome.failed(reason, ToolSpawnError(reason))
            await self._finish(sink, outcome)
            return outcome

        try:
            returncode = await self._supervise(process, cmd_str, sink, stdout_classifier, stderr_classifier)
        except Exception as e:
            logger.error(f"Supervision of '{cmd_str}' failed: {e}")
            await send_to_sink(sink, CLEAR_LINE)
            raise

        log_level = logging.DEBUG if returncode == 0 else logging.WARNING
        logger.log(log_level, f"Process {process.pid} finished: Code={returncode}, Cmd='{cmd_str}'")

        if returncode < 0:
            # Killed by a signal, there is no exit code to interpret
            outcome = Outcome.aborted()
        else:
            outcome = await resolve_exit(returncode)

        await self._finish(sink, outcome)
        return outcome

    async def _supervise(
        self,
        process: asyncio.subprocess.Process,
        cmd_str: str,
        sink: Sink,
        stdout_classifier: StreamClassifier,
        stderr_classifier: StreamClassifier,
    ) -> int:
        """Relay output until the process exits, then drain for a bounded time"""
        poller = asyncio.create_task(self._poll_abort(process))
        relays = [
            asyncio.create_task(self._relay(process.stdout, stdout_classifier, sink)),
            asyncio.create_task(self._relay(process.stderr, stderr_classifier, sink)),
        ]
        tasks = [poller, *relays]
        try:
            pending = set(tasks)
            while poller in pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    task.result()

            if pending:
                done, pending = await asyncio.wait(pending, timeout=self.drain_timeout)
                for task in done:
                    task.result()
                if pending:
                    logger.warning(f"Output of '{cmd_str}' still open {self.drain_timeout}s after exit, detaching")
            return process.returncode
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if process.returncode is None:
                logger.warning(f"'{cmd_str}' still running after supervision ended, terminating")
                self.terminator.terminate(process)

    async def _poll_abort(self, process: asyncio.subprocess.Process) -> None:
        """Check the abort flag every tick; returns once the process has exited"""
        while process.returncode is None:
            await asyncio.sleep(self.poll_interval)
            if self.token.cancelled and process.returncode is None:
                logger.info(f"Abort requested, terminating process {process.pid}")
                self.terminator.terminate(process)

    async def _relay(
        self,
        stream: asyncio.StreamReader,
        classifier: StreamClassifier,
        sink: Sink,
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(self.chunk_size)
            text = decoder.decode(data, final=not data)
            if text:
                await send_to_sink(sink, render(classifier.classify(text)))
            if not data:
                return

    async def _finish(self, sink: Sink, outcome: Outcome) -> None:
        if outcome.status is OutcomeStatus.FAILED:
            await send_to_sink(sink, tagged(f"{outcome.reason}\n", Tag.ERROR))
        await send_to_sink(sink, CLEAR_LINE)
