"""
Host command runner.

Runs host utilities (mount, umount, mkfs.ext4) with combined stdout/stderr
capture and a hard timeout. A command that outlives the timeout is killed.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0

_default_timeout = DEFAULT_TIMEOUT_SECONDS


class CommandError(RuntimeError):
    """A host command failed to start or exited non-zero."""

    def __init__(self, message: str, output: str = "", returncode: Optional[int] = None):
        super().__init__(message)
        self.output = output
        self.returncode = returncode


class CommandTimeoutError(CommandError):
    """A host command ran past its timeout and was killed."""


def set_default_timeout(seconds: float) -> None:
    """Override the timeout used when execute() is called without one."""
    global _default_timeout
    if seconds <= 0:
        raise ValueError("command timeout must be positive")
    _default_timeout = float(seconds)


def get_default_timeout() -> float:
    return _default_timeout


def _decode(raw) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


def execute(binary: str, args: Sequence[str] = (), timeout: Optional[float] = None) -> str:
    """
    Run a host binary and return its combined output.

    Args:
        binary: Executable name or path (e.g., 'mount')
        args: Command arguments
        timeout: Seconds before the process is killed (default: module timeout)

    Returns:
        Combined stdout/stderr as text

    Raises:
        CommandTimeoutError: The process did not finish in time
        CommandError: The process could not be started or exited non-zero
    """
    cmd = [binary, *args]
    limit = timeout if timeout is not None else _default_timeout
    logger.debug(f"Executing: {' '.join(cmd)} (timeout={limit}s)")

    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=limit,
        )
    except subprocess.TimeoutExpired as e:
        # subprocess.run kills the child before re-raising
        output = _decode(e.output)
        raise CommandTimeoutError(
            f"Timeout executing: {binary} {list(args)}, output {output}",
            output=output,
        ) from e
    except OSError as e:
        raise CommandError(f"Failed to execute: {binary} {list(args)}, error {e}") from e

    output = _decode(result.stdout)
    if result.returncode != 0:
        raise CommandError(
            f"Failed to execute: {binary} {list(args)}, output {output}, exit code {result.returncode}",
            output=output,
            returncode=result.returncode,
        )
    return output
