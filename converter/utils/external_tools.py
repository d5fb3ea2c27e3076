"""
Bounded execution of external tools and blocking library calls.

Every invocation is limited by the tool timeout. External processes run in
their own process group so that a timeout or a cancelled request kills the
whole tree. Blocking calls run in worker threads that are told to stop
through a CancelToken and waited for, so no worker outlives the scratch
directory of its job.
"""

import asyncio
import os
import shutil
import signal
import threading
from typing import Any, Callable, List, Optional, Sequence

from .error_handling import ConversionFailed, scrub_paths
from .logging_config import get_logger

logger = get_logger(__name__)

STDERR_TAIL_CHARS = 2000


def tool_available(binary: str) -> bool:
    """Whether an executable is on PATH."""
    return shutil.which(binary) is not None


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.warning(f"Failed to kill process group {process.pid}: {e}")
        process.kill()


async def run_tool(
    args: Sequence[str],
    tool: str,
    timeout: float,
    cwd: Optional[str] = None,
    env: Optional[dict] = None,
) -> str:
    """
    Run an external tool and wait for it to finish.

    Args:
        args: Full argument vector, executable first
        tool: Human readable tool name for messages
        timeout: Seconds before the process group is killed
        cwd: Working directory
        env: Environment for the child process

    Returns:
        The tool's stdout, decoded

    Raises:
        ConversionFailed: Tool missing, timed out or exited non-zero
    """
    argv: List[str] = [str(a) for a in args]
    logger.debug(f"Running {tool}: {' '.join(argv)}")

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
            start_new_session=True,
        )
    except FileNotFoundError:
        raise ConversionFailed(f"{tool} is not installed")

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill_process_group(process)
        await process.wait()
        raise ConversionFailed(f"{tool} timed out after {timeout} seconds")
    except asyncio.CancelledError:
        _kill_process_group(process)
        await _wait_until_done(asyncio.ensure_future(process.wait()), tool)
        raise

    if process.returncode != 0:
        tail = stderr.decode("utf-8", errors="replace")[-STDERR_TAIL_CHARS:]
        logger.warning(f"{tool} exited with code {process.returncode}")
        raise ConversionFailed(
            f"{tool} failed with exit code {process.returncode}",
            details=scrub_paths(tail),
        )

    return stdout.decode("utf-8", errors="replace")


class OperationCancelled(Exception):
    """Raised inside a worker thread once its cancel token has been set."""
    pass


class CancelToken:
    """
    Cooperative cancellation flag shared with a worker thread.

    Blocking bodies call ``check()`` between units of work (archive members,
    copy chunks, pages) so a timed-out job stops writing promptly.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled")


async def _wait_until_done(future: "asyncio.Future", tool: str) -> None:
    """Wait for an abandoned worker to exit, riding out repeated cancellation."""
    while not future.done():
        try:
            await asyncio.wait({future})
        except asyncio.CancelledError:
            continue
    if not future.cancelled() and future.exception() is not None:
        logger.debug(f"{tool} worker stopped: {future.exception()!r}")


async def run_blocking(
    func: Callable[..., Any],
    *args: Any,
    timeout: float,
    tool: str = "converter",
    token: Optional[CancelToken] = None,
) -> Any:
    """
    Run a blocking call in a worker thread, bounded by a timeout.

    A thread cannot be killed, so on timeout or cancellation the token is set
    and the call waits for the worker to return before giving up. Callers can
    therefore remove the worker's files as soon as this returns or raises.
    """
    token = token or CancelToken()
    future = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
    except asyncio.TimeoutError:
        token.cancel()
        await _wait_until_done(future, tool)
        raise ConversionFailed(f"{tool} timed out after {timeout} seconds")
    except asyncio.CancelledError:
        token.cancel()
        await _wait_until_done(future, tool)
        raise
