"""
Command execution and small filesystem helpers.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Union

from .config import AppConfig
from .errors import ExecutionError

logger = logging.getLogger("vps_init.utils")


# ----------------------------------------------------------------
# Command Execution Helpers
# ----------------------------------------------------------------
def run_command(
    cmd: List[str],
    env: Optional[Dict[str, str]] = None,
    check: bool = True,
    capture_output: bool = True,
    timeout: int = AppConfig.COMMAND_TIMEOUT,
) -> subprocess.CompletedProcess:
    """
    Execute a system command with a bounded timeout.

    Args:
        cmd: Command to execute
        env: Extra environment variables merged over the current environment
        check: Whether to raise an exception on non-zero exit
        capture_output: Whether to capture stdout/stderr
        timeout: Command timeout in seconds

    Returns:
        subprocess.CompletedProcess object

    Raises:
        ExecutionError: If the command fails (with check), times out, or
            cannot be started
    """
    cmd_str = " ".join(cmd)
    logger.debug(f"Executing: {cmd_str}")

    full_env = os.environ.copy()
    if env:
        full_env.update(env)

    try:
        return subprocess.run(
            cmd,
            env=full_env,
            check=check,
            text=True,
            capture_output=capture_output,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as e:
        error_msg = f"Command failed (code {e.returncode}): {cmd_str}"
        if e.stderr:
            error_msg += f"\nError: {e.stderr.strip()}"
        logger.debug(error_msg)
        raise ExecutionError(error_msg) from e
    except subprocess.TimeoutExpired as e:
        raise ExecutionError(
            f"Command timed out after {timeout} seconds: {cmd_str}"
        ) from e
    except OSError as e:
        raise ExecutionError(f"Error executing command: {cmd_str}: {e}") from e


class CommandRunner:
    """
    Callable wrapper around run_command used by every step.

    Probes always execute. In dry-run mode, mutating commands are logged and
    reported as successful without being run.
    """

    def __init__(self, dry_run: bool = False, timeout: int = AppConfig.COMMAND_TIMEOUT):
        self.dry_run = dry_run
        self.timeout = timeout

    def __call__(
        self,
        cmd: List[str],
        check: bool = True,
        probe: bool = False,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> subprocess.CompletedProcess:
        if self.dry_run and not probe:
            logger.info(f"[dry-run] would execute: {' '.join(cmd)}")
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
        return run_command(cmd, env=env, check=check, timeout=timeout or self.timeout)


class Utils:
    """Utility methods for common operations."""

    @staticmethod
    def read_text(path: Union[str, Path]) -> Optional[str]:
        """Read a text file, returning None if it is missing or unreadable."""
        try:
            return Path(path).read_text(errors="replace")
        except OSError:
            return None

    @staticmethod
    def format_size_mb(size_mb: int) -> str:
        if size_mb >= 1024:
            return f"{size_mb / 1024:.1f} GB"
        return f"{size_mb} MB"
