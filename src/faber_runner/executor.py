"""SSH execution engine for faber-runner.

A single command runs as one state machine. Reader tasks, the process exit
and the deadline timer post typed events onto one queue; the loop in
``CommandExecutor.execute`` consumes them and the first terminal event wins.
Anything arriving after that is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import asyncssh

from .config import DEFAULT_DEVICE_FLOW_HOST, ServerTarget
from .connection import ConnectionManager, Session
from .device_flow import DeviceFlowDetector, PromptInfo, combined_output
from .errors import CommandTimeoutError, ExecError
from .progress import ProgressCallback, ProgressLog, ProgressTag

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0
UNKNOWN_EXIT_CODE = -1
READ_SIZE = 65536


@dataclass
class ExecutionRequest:
    """A fully formed shell command plus how to supervise it."""

    command: str
    timeout: float = DEFAULT_TIMEOUT
    detect_interactive_prompt: bool = False
    on_progress: ProgressCallback | None = None


@dataclass
class ExecutionResult:
    """Terminal outcome of a command that did not fail or time out."""

    stdout: str
    stderr: str
    exit_code: int
    prompt_info: PromptInfo | None = None
    pending: bool = False
    handoff: Session | None = None

    @property
    def success(self) -> bool:
        return not self.pending and self.exit_code == 0


# Events consumed by the executor loop


@dataclass(frozen=True)
class DataChunk:
    stream: str  # "stdout" or "stderr"
    data: str


@dataclass(frozen=True)
class StreamClosed:
    exit_code: int


@dataclass(frozen=True)
class TimerFired:
    pass


@dataclass(frozen=True)
class PromptDetected:
    prompt: PromptInfo


Event = Union[DataChunk, StreamClosed, TimerFired, PromptDetected]
Outcome = Union[ExecutionResult, CommandTimeoutError]


class CommandExecutor:
    """Runs one command on an open session and settles exactly once."""

    def __init__(
        self,
        session: Session,
        sink: ProgressLog,
        detector: DeviceFlowDetector | None = None,
    ):
        self.session = session
        self.sink = sink
        self.detector = detector
        self.stdout = ""
        self.stderr = ""
        self._events: asyncio.Queue[Event] = asyncio.Queue()
        self._resolved = False
        self._tasks: list[asyncio.Task] = []
        self._timer: asyncio.TimerHandle | None = None

    def _post(self, event: Event) -> None:
        """Queue an event unless the execution already resolved."""
        if not self._resolved:
            self._events.put_nowait(event)

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run *request.command* and return its result.

        Raises ExecError if the exec request is rejected and
        CommandTimeoutError if the deadline passes first.
        """
        loop = asyncio.get_running_loop()
        detector = self.detector if request.detect_interactive_prompt else None
        self._timer = loop.call_later(request.timeout, self._post, TimerFired())

        try:
            # The exec request races the deadline like every later event
            opening = asyncio.create_task(
                self.session.connection.create_process(
                    request.command, encoding="utf-8", errors="replace"
                )
            )
            first_event = asyncio.create_task(self._events.get())
            self._tasks = [opening, first_event]
            await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)

            outcome: Outcome | None = None
            if first_event.done():
                # Only the timer can post before the process exists
                outcome = self._handle(first_event.result(), request, detector)
            else:
                first_event.cancel()
                try:
                    process = opening.result()
                except (asyncssh.Error, OSError) as e:
                    self._resolved = True
                    message = f"Command error: {e}"
                    self.sink.emit(ProgressTag.ERROR, message)
                    logger.warning("Exec request rejected: %s", e)
                    raise ExecError(message) from e

                self.session.process = process
                self._start_tasks(process)

            while outcome is None:
                event = await self._events.get()
                outcome = self._handle(event, request, detector)
            self._resolved = True
        finally:
            await self._shutdown()

        if isinstance(outcome, CommandTimeoutError):
            raise outcome
        return outcome

    def _start_tasks(self, process) -> None:
        stdout_task = asyncio.create_task(self._read_stream(process.stdout, "stdout"))
        stderr_task = asyncio.create_task(self._read_stream(process.stderr, "stderr"))
        closer = asyncio.create_task(self._wait_closed(process, stdout_task, stderr_task))
        self._tasks += [stdout_task, stderr_task, closer]

    async def _read_stream(self, stream, name: str) -> None:
        """Post chunks from *stream* until EOF or a read error."""
        while True:
            try:
                data = await stream.read(READ_SIZE)
            except (asyncssh.Error, OSError) as e:
                self.sink.emit(ProgressTag.ERROR, f"Error reading {name}: {e}")
                return
            if not data:
                return
            self._post(DataChunk(name, data))

    async def _wait_closed(self, process, *readers: asyncio.Task) -> None:
        await asyncio.gather(*readers)
        try:
            await process.wait()
        except (asyncssh.Error, OSError) as e:
            logger.debug("Error waiting for exit status: %s", e)
        exit_status = process.exit_status
        self._post(StreamClosed(UNKNOWN_EXIT_CODE if exit_status is None else exit_status))

    def _handle(
        self,
        event: Event,
        request: ExecutionRequest,
        detector: DeviceFlowDetector | None,
    ) -> Outcome | None:
        """Apply one event; return the outcome if it is terminal."""
        if isinstance(event, DataChunk):
            if event.stream == "stdout":
                self.stdout += event.data
                self.sink.emit_chunk(ProgressTag.STDOUT, event.data)
            else:
                self.stderr += event.data
                self.sink.emit_chunk(ProgressTag.STDERR, event.data)

            if detector is not None:
                prompt = detector.scan(combined_output(self.stdout, self.stderr))
                if prompt is not None:
                    return self._handle(PromptDetected(prompt), request, detector)
            return None

        if isinstance(event, StreamClosed):
            self.sink.emit(ProgressTag.SSH, f"Command exited with status {event.exit_code}")
            return ExecutionResult(
                stdout=self.stdout,
                stderr=self.stderr,
                exit_code=event.exit_code,
            )

        if isinstance(event, PromptDetected):
            prompt = event.prompt
            self.sink.emit(
                ProgressTag.DEVICE_FLOW,
                f"Authorization required: open {prompt.verification_uri} "
                f"and enter code {prompt.user_code}",
            )
            logger.info("Device-flow prompt detected for %r", request.command)
            return ExecutionResult(
                stdout=self.stdout,
                stderr=self.stderr,
                exit_code=UNKNOWN_EXIT_CODE,
                prompt_info=prompt,
                pending=True,
            )

        if isinstance(event, TimerFired):
            error = CommandTimeoutError(request.command, request.timeout)
            self.sink.emit(ProgressTag.TIMEOUT, str(error))
            logger.warning("%s", error)
            return error

        raise TypeError(f"Unknown event: {event!r}")

    async def _shutdown(self) -> None:
        """Disarm the timer and stop the helper tasks."""
        self._resolved = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []


async def run_command(
    target: ServerTarget,
    request: ExecutionRequest,
    *,
    progress_log: Path | None = None,
    device_flow_host: str = DEFAULT_DEVICE_FLOW_HOST,
    manager: ConnectionManager | None = None,
) -> ExecutionResult:
    """Connect to *target*, run *request* and disconnect.

    The connection stays open only when the result is pending; it is then
    returned to the caller through ``ExecutionResult.handoff``.
    """
    manager = manager or ConnectionManager()
    detector = DeviceFlowDetector(device_flow_host)

    with ProgressLog(progress_log, request.on_progress) as sink:
        session: Session | None = None
        handed_off = False
        try:
            session = await manager.connect(target, sink)
            sink.emit(ProgressTag.SSH, f"$ {request.command}")
            result = await CommandExecutor(session, sink, detector).execute(request)
            if result.pending:
                result.handoff = manager.hand_off(session)
                handed_off = True
            return result
        finally:
            if not handed_off:
                await manager.disconnect(session, sink)
