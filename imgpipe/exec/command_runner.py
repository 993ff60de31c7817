"""
Command runner for external tools and hook commands.
Every subprocess of a step goes through one runner so the step time budget
applies to all of them.
"""

import logging
import os
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..exceptions import StepTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of one command execution."""
    argv: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    error: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def describe_failure(self) -> str:
        """Short message for logs and step errors."""
        if self.error:
            return self.error.get("message", f"exit code {self.exit_code}")
        detail = self.stderr.strip().splitlines()
        suffix = f": {detail[-1]}" if detail else ""
        return f"{self.argv[0] if self.argv else 'command'} exited with {self.exit_code}{suffix}"


class CommandRunner:
    """
    Executes commands with output capture and an optional deadline.

    A runner returned by ``with_timeout`` carries a wall-clock deadline; every
    command it runs gets the remaining budget, and exceeding it raises
    StepTimeoutError so the driver can fail just that step.
    """

    def __init__(
        self,
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        deadline: Optional[float] = None,
        timeout_sec: Optional[float] = None,
    ):
        """
        Initialize command runner.

        Args:
            cwd: Working directory (default: current directory)
            env: Environment variables to add/override
            deadline: time.monotonic() value after which commands are refused
            timeout_sec: The step budget the deadline was derived from
        """
        self.cwd = cwd
        self.env = env or {}
        self.deadline = deadline
        self.timeout_sec = timeout_sec

    def with_timeout(self, timeout_sec: Optional[float]) -> "CommandRunner":
        """Return a runner bounded by a per-step wall-clock budget."""
        if not timeout_sec:
            return CommandRunner(self.cwd, self.env)
        return CommandRunner(
            self.cwd,
            self.env,
            deadline=time.monotonic() + float(timeout_sec),
            timeout_sec=float(timeout_sec),
        )

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check_deadline(self) -> None:
        """Raise StepTimeoutError if the step budget is spent."""
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise StepTimeoutError(self.timeout_sec or 0)

    def run(
        self,
        command: Union[str, List[str]],
        timeout_sec: Optional[float] = None,
        shell: bool = False,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        """
        Execute a command and capture its output.

        Args:
            command: argv list, or a string (split with shlex unless shell=True)
            timeout_sec: Per-command timeout; exit code 124 when exceeded
            shell: Run the string through ``sh -c``
            input_text: Text to feed on stdin

        Returns:
            CommandResult with captured output

        Raises:
            StepTimeoutError: If the step deadline expires first
        """
        if shell:
            if not isinstance(command, str):
                command = ' '.join(shlex.quote(str(token)) for token in command)
            argv = ['sh', '-c', command]
        elif isinstance(command, str):
            argv = shlex.split(command)
        elif isinstance(command, list):
            argv = [str(token) for token in command]
        else:
            raise ValueError(f"Invalid command type: {type(command)}. Expected str or list.")

        self.check_deadline()
        effective_timeout = timeout_sec
        remaining = self.remaining()
        bounded_by_step = False
        if remaining is not None and (effective_timeout is None or remaining < effective_timeout):
            effective_timeout = remaining
            bounded_by_step = True

        process_env = dict(os.environ)
        process_env.update(self.env)

        logger.debug(f"Running: {' '.join(shlex.quote(a) for a in argv)}")
        start_time = time.time()

        try:
            result = subprocess.run(
                argv,
                cwd=str(self.cwd) if self.cwd else None,
                env=process_env,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=effective_timeout,
            )
            exit_code = result.returncode
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            error = None

        except subprocess.TimeoutExpired as e:
            if bounded_by_step:
                raise StepTimeoutError(self.timeout_sec or 0)
            # Timeout: exit code 124, as coreutils timeout(1)
            exit_code = 124
            stdout = self._decode(e.stdout)
            stderr = self._decode(e.stderr)
            error = {
                "type": "timeout",
                "message": f"Command timed out after {timeout_sec} seconds",
                "context": {"timeout_sec": timeout_sec},
            }

        except OSError as e:
            # Missing executable, permission problems
            exit_code = 127 if isinstance(e, FileNotFoundError) else 126
            stdout = ""
            stderr = str(e)
            error = {
                "type": "execution_error",
                "message": f"Cannot execute '{argv[0]}': {e}",
                "context": {},
            }

        duration_ms = int((time.time() - start_time) * 1000)

        return CommandResult(
            argv=argv,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=duration_ms,
            error=error,
        )

    @staticmethod
    def _decode(data: Any) -> str:
        if data is None:
            return ""
        if isinstance(data, bytes):
            return data.decode('utf-8', errors='replace')
        return data

    @staticmethod
    def which(tool: str) -> Optional[str]:
        """Locate an external tool on PATH."""
        return shutil.which(tool)

