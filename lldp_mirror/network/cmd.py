"""Shared command execution for traffic-control and link queries."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Hookscripts may be started with a minimal PATH.
SBIN_PATHS = ("/sbin", "/usr/sbin")

TIMEOUT_RETURNCODE = 124
NOT_FOUND_RETURNCODE = 127


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    argv: tuple[str, ...]
    returncode: int
    output: str  # stdout and stderr combined

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return " ".join(self.argv)


def command_env() -> dict[str, str]:
    """Return the process environment with the sbin directories on PATH."""
    env = dict(os.environ)
    parts = [p for p in env.get("PATH", "").split(os.pathsep) if p]
    for extra in SBIN_PATHS:
        if extra not in parts:
            parts.append(extra)
    env["PATH"] = os.pathsep.join(parts)
    return env


class CommandExecutor:
    """Runs external commands and classifies their exit status.

    A failing command never raises; callers inspect the returned
    CommandResult and decide how severe the failure is.
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def run(self, argv: list[str], *, description: str = "", quiet: bool = False) -> CommandResult:
        """Run a command and capture its combined output.

        Args:
            argv: Command and arguments
            description: What the command is for, used in failure logs
            quiet: Log failures at debug level (expected failures of queries)

        Returns:
            CommandResult with return code and combined output
        """
        logger.debug(f"Running: {' '.join(argv)}")
        try:
            proc = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
                env=command_env(),
            )
            result = CommandResult(tuple(argv), proc.returncode, proc.stdout or "")
        except subprocess.TimeoutExpired:
            result = CommandResult(tuple(argv), TIMEOUT_RETURNCODE, f"timed out after {self.timeout}s")
        except FileNotFoundError:
            result = CommandResult(tuple(argv), NOT_FOUND_RETURNCODE, f"{argv[0]}: command not found")
        except OSError as e:
            result = CommandResult(tuple(argv), NOT_FOUND_RETURNCODE, str(e))

        if not result.ok:
            log = logger.debug if quiet else logger.error
            what = f"{description} failed" if description else "Command failed"
            log(
                f"{what} (rc={result.returncode}). Cmd: '{result.command_line}'. "
                f"Output: {result.output.strip()}"
            )
        return result

    def tc(self, *args: str, description: str = "", quiet: bool = False) -> CommandResult:
        """Run a tc command."""
        return self.run(["tc", *args], description=description, quiet=quiet)

    def ip(self, *args: str, description: str = "", quiet: bool = False) -> CommandResult:
        """Run an ip command."""
        return self.run(["ip", *args], description=description, quiet=quiet)

    def link_exists(self, name: str) -> bool:
        """Check if a network interface exists."""
        return self.ip("link", "show", name, quiet=True).ok
