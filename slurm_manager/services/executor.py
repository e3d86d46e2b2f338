"""Cluster command execution for SLURM Manager."""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a single cluster command."""

    ok: bool
    stdout: str = ""
    stderr: str = ""
    error: str = ""


class CommandExecutor(Protocol):
    """Anything that can run a cluster command and return its output."""

    def run(
        self, args: Sequence[str], cwd: Optional[str] = None, timeout: Optional[float] = None
    ) -> CommandResult:
        ...


class SubprocessExecutor:
    """Run cluster commands as local subprocesses."""

    def __init__(self, timeout: float = 10):
        self.timeout = timeout

    def run(
        self, args: Sequence[str], cwd: Optional[str] = None, timeout: Optional[float] = None
    ) -> CommandResult:
        try:
            proc = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
                cwd=cwd,
                check=False,
            )
        except FileNotFoundError:
            return CommandResult(ok=False, error=f"{args[0]} command not found")
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out: %s", " ".join(args))
            return CommandResult(ok=False, error="Command timeout")
        except OSError as e:
            return CommandResult(ok=False, error=str(e))

        if proc.returncode != 0:
            return CommandResult(
                ok=False,
                stdout=proc.stdout,
                stderr=proc.stderr,
                error=proc.stderr.strip() or f"{args[0]} exited with {proc.returncode}",
            )
        return CommandResult(ok=True, stdout=proc.stdout, stderr=proc.stderr)
