"""External-process stage runner.

Every transformation step is a command-line tool invocation.  The
pipeline only depends on the ``StageRunner`` protocol, so tests swap in
a fake that records calls instead of launching GDAL.

``SubprocessRunner`` launches the tool with ``asyncio`` so the event
loop keeps serving other requests while a stage runs.  Standard error
is streamed line-by-line to this module's logger and the last lines are
kept for the failure payload.  Tools that write their result to standard
output (``geo2topo``) get it redirected into a named file.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Protocol

from relief_maps.core.exceptions import PermanentError

logger = logging.getLogger("relief_maps.pipeline.runner")

STDERR_TAIL_LINES = 20

# Shell conventions for "command not found" / "not executable".
EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126


class StageFailure(PermanentError):
    """Raised when an external tool exits non-zero or cannot be launched.

    Attributes:
        command: Executable that was run.
        exit_code: Process exit status (127 if the executable is missing).
        stderr_tail: Last lines the tool wrote to standard error.
    """

    default_code = "STAGE_FAILED"

    def __init__(
        self,
        message: str,
        *,
        command: str,
        exit_code: int,
        stage: str = "",
        stderr_tail: tuple[str, ...] = (),
        **kwargs: object,
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        super().__init__(message, stage=stage, **kwargs)  # type: ignore[arg-type]

    def to_error_dict(self) -> dict[str, object]:
        payload = super().to_error_dict()
        payload["command"] = self.command
        payload["exit_code"] = self.exit_code
        payload["stderr_tail"] = list(self.stderr_tail)
        return payload


class StageTimeoutError(StageFailure):
    """Raised when a tool exceeds ``STAGE_TIMEOUT_SECONDS`` and is killed."""

    default_code = "STAGE_TIMEOUT"
    kind = "transient"
    default_retryable = True


@dataclass(frozen=True, slots=True)
class CompletedStage:
    """Outcome of a successful tool invocation."""

    command: str
    args: tuple[str, ...]
    returncode: int
    duration_seconds: float
    stderr_tail: tuple[str, ...] = ()


class StageRunner(Protocol):
    """Capability to run one external command to completion."""

    async def run(
        self,
        command: str,
        args: list[str],
        *,
        stage: str = "",
        stdout_path: Path | None = None,
        merge_stderr: bool = False,
    ) -> CompletedStage: ...


class SubprocessRunner:
    """Run commands as child processes via ``asyncio``.

    Args:
        timeout_seconds: Per-invocation limit; ``0`` or ``None`` waits forever.
    """

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds or None

    async def run(
        self,
        command: str,
        args: list[str],
        *,
        stage: str = "",
        stdout_path: Path | None = None,
        merge_stderr: bool = False,
    ) -> CompletedStage:
        """Run *command* with *args* and wait for it to exit.

        Args:
            command: Executable name or path.
            args: Argument vector (without the executable).
            stage: Stage name, attached to logs and errors.
            stdout_path: Write standard output to this file instead of the log.
            merge_stderr: With *stdout_path*, also write standard error there.

        Raises:
            StageFailure: Non-zero exit, or the process could not be started.
            StageTimeoutError: The process outlived the configured timeout.
        """
        start = time.monotonic()
        tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        logger.debug("Launching | stage=%s | command=%s | args=%s", stage, command, args)

        with contextlib.ExitStack() as stack:
            out_file: IO[bytes] | None = None
            try:
                if stdout_path is not None:
                    out_file = stack.enter_context(stdout_path.open("wb"))
                process = await asyncio.create_subprocess_exec(
                    command,
                    *args,
                    stdout=out_file if out_file is not None else asyncio.subprocess.PIPE,
                    stderr=(
                        asyncio.subprocess.STDOUT
                        if merge_stderr and out_file is not None
                        else asyncio.subprocess.PIPE
                    ),
                )
            except OSError as exc:
                exit_code = EXIT_NOT_FOUND if isinstance(exc, FileNotFoundError) else EXIT_NOT_EXECUTABLE
                msg = f"{stage or command}: could not launch {command}: {exc}"
                raise StageFailure(msg, command=command, exit_code=exit_code, stage=stage) from exc

            drains = []
            if process.stdout is not None:
                drains.append(_drain(process.stdout, command, stage, logging.DEBUG, None))
            if process.stderr is not None:
                drains.append(_drain(process.stderr, command, stage, logging.WARNING, tail))

            try:
                await asyncio.wait_for(
                    asyncio.gather(*drains, process.wait()),
                    timeout=self.timeout_seconds,
                )
            except TimeoutError as exc:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
                msg = f"{stage or command}: {command} timed out after {self.timeout_seconds}s"
                raise StageTimeoutError(
                    msg,
                    command=command,
                    exit_code=process.returncode if process.returncode is not None else -1,
                    stage=stage,
                    stderr_tail=tuple(tail),
                ) from exc

        duration = time.monotonic() - start
        returncode = process.returncode if process.returncode is not None else -1

        logger.info(
            "Child process exited | stage=%s | command=%s | code=%d | duration=%.2fs",
            stage,
            command,
            returncode,
            duration,
        )

        if returncode != 0:
            msg = f"{stage or command}: {command} exited with code {returncode}"
            raise StageFailure(
                msg,
                command=command,
                exit_code=returncode,
                stage=stage,
                stderr_tail=tuple(tail),
            )

        return CompletedStage(
            command=command,
            args=tuple(args),
            returncode=returncode,
            duration_seconds=round(duration, 3),
            stderr_tail=tuple(tail),
        )


async def _drain(
    stream: asyncio.StreamReader,
    command: str,
    stage: str,
    level: int,
    tail: deque[str] | None,
) -> None:
    """Forward *stream* to the log line by line, optionally keeping a tail.

    A line longer than the stream buffer limit is forwarded in
    limit-sized pieces rather than aborting the stage.
    """
    eof = False
    while not eof:
        try:
            raw = await stream.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            raw, eof = exc.partial, True
        except asyncio.LimitOverrunError as exc:
            raw = await stream.readexactly(exc.consumed)

        line = raw.decode("utf-8", errors="replace").rstrip()
        if not line:
            continue
        if tail is not None:
            tail.append(line)
        logger.log(level, "%s | stage=%s | %s", command, stage, line)
