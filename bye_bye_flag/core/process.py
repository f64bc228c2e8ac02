"""Async subprocess execution with tracking for clean shutdown."""

import asyncio
import codecs
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from .constants import SHUTDOWN_GRACE_SECONDS, SIGNAL_EXIT_CODES

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]

_READ_CHUNK = 4096
_KILL_GRACE_SECONDS = 5.0


@dataclass
class CommandResult:
    """Holds the outcome of a subprocess invocation."""

    args: tuple
    returncode: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def combined_output(self) -> str:
        """stdout and stderr, labelled, for error messages."""
        parts = []
        if self.stdout.strip():
            parts.append(f"stdout:\n{self.stdout.rstrip()}")
        if self.stderr.strip():
            parts.append(f"stderr:\n{self.stderr.rstrip()}")
        return "\n\n".join(parts)


class ProcessTracker:
    """Tracks live child processes so signals can terminate all of them."""

    def __init__(self):
        self._processes = set()

    def register(self, process: asyncio.subprocess.Process) -> None:
        self._processes.add(process)

    def unregister(self, process: asyncio.subprocess.Process) -> None:
        self._processes.discard(process)

    def __len__(self) -> int:
        return len(self._processes)

    def terminate_all(self) -> None:
        """Send SIGTERM to the process group of every tracked process still running."""
        for process in list(self._processes):
            if process.returncode is not None:
                continue
            try:
                _signal_group(process, signal.SIGTERM)
            except ProcessLookupError:
                logger.debug(f"Process {process.pid} already exited")

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Terminate children on SIGINT/SIGTERM, then exit after a short grace period."""
        loop = loop or asyncio.get_running_loop()

        def _shutdown(signame: str) -> None:
            logger.warning(f"Received {signame}, shutting down...")
            self.terminate_all()
            loop.call_later(SHUTDOWN_GRACE_SECONDS, os._exit, SIGNAL_EXIT_CODES.get(signame, 128))

        for signame in SIGNAL_EXIT_CODES:
            loop.add_signal_handler(getattr(signal, signame), _shutdown, signame)


def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
    """Signal the whole process group led by ``process``.

    Children are started in their own session, so the group id is the pid and
    grandchildren spawned by ``bash -c`` receive the signal too.
    """
    os.killpg(process.pid, sig)


# Shared by every command run in this process
default_tracker = ProcessTracker()


async def _drain(stream: asyncio.StreamReader, sink: List[str], on_line: Optional[LineCallback]) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        text = decoder.decode(chunk)
        sink.append(text)
        if on_line is None:
            continue
        pending += text
        *lines, pending = pending.split("\n")
        for line in lines:
            if line.strip():
                on_line(line)
    tail = decoder.decode(b"", final=True)
    if tail:
        sink.append(tail)
        pending += tail
    if on_line is not None and pending.strip():
        on_line(pending.strip())


async def _feed(stdin: asyncio.StreamWriter, data: Optional[str]) -> None:
    try:
        if data:
            stdin.write(data.encode("utf-8"))
            await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("Child closed stdin before reading all input")
    finally:
        stdin.close()


async def run_command(
    args: Sequence[str],
    cwd: Optional[Union[str, Path]] = None,
    *,
    input_text: Optional[str] = None,
    timeout: Optional[float] = None,
    env: Optional[Dict[str, str]] = None,
    on_stdout_line: Optional[LineCallback] = None,
    on_stderr_line: Optional[LineCallback] = None,
    tracker: Optional[ProcessTracker] = None,
) -> CommandResult:
    """Run a command and capture its output.

    Args:
        args: Program and arguments
        cwd: Working directory
        input_text: Written to stdin, which is then closed
        timeout: Wall-clock limit in seconds; on expiry the process receives SIGTERM
        env: Environment (defaults to the current environment)
        on_stdout_line: Called with each non-blank stdout line as it arrives
        on_stderr_line: Called with each non-blank stderr line as it arrives
        tracker: Process tracker to register with

    Returns:
        CommandResult; ``timed_out`` is set when the limit was hit

    Raises:
        OSError: If the program cannot be started
    """
    tracker = tracker or default_tracker
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=str(cwd) if cwd is not None else None,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env if env is not None else dict(os.environ),
        start_new_session=True,
    )
    tracker.register(process)
    stdout_parts: List[str] = []
    stderr_parts: List[str] = []
    timed_out = False
    try:
        io = asyncio.gather(
            _feed(process.stdin, input_text),
            _drain(process.stdout, stdout_parts, on_stdout_line),
            _drain(process.stderr, stderr_parts, on_stderr_line),
            process.wait(),
        )
        try:
            await asyncio.wait_for(io, timeout)
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning(f"Command timed out after {timeout}s: {args[0]}")
            await _terminate(process)
    finally:
        if process.returncode is None:
            await _terminate(process)
        tracker.unregister(process)

    return CommandResult(
        args=tuple(args),
        returncode=process.returncode,
        stdout="".join(stdout_parts),
        stderr="".join(stderr_parts),
        timed_out=timed_out,
    )


async def _terminate(process: asyncio.subprocess.Process) -> None:
    try:
        _signal_group(process, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), _KILL_GRACE_SECONDS)
    except asyncio.TimeoutError:
        logger.warning(f"Process {process.pid} ignored SIGTERM, killing its group")
    # Anything left in the group, including grandchildren of an exited shell
    try:
        _signal_group(process, signal.SIGKILL)
    except ProcessLookupError:
        pass
    await process.wait()


async def run_shell(
    command: str,
    cwd: Optional[Union[str, Path]] = None,
    shell_init: Optional[str] = None,
    **kwargs,
) -> CommandResult:
    """Run ``command`` through ``bash -c``, prefixed with ``shell_init &&`` when given."""
    script = f"{shell_init} && {command}" if shell_init else command
    return await run_command(["bash", "-c", script], cwd, **kwargs)
