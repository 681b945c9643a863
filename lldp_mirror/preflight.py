"""Startup checks run once before any reconciliation."""

from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path

from lldp_mirror.config import Settings
from lldp_mirror.errors import EnvironmentCheckError
from lldp_mirror.network.cmd import CommandExecutor, command_env
from lldp_mirror.network.filters import TcCapabilities

logger = logging.getLogger(__name__)

REQUIRED_COMMANDS = ("tc", "ip")


def detect_tc_capabilities(executor: CommandExecutor) -> TcCapabilities:
    """Check once whether `tc -j` produces JSON filter output."""
    result = executor.tc("-j", "filter", "show", "dev", "lo", quiet=True)
    if not result.ok:
        return TcCapabilities(json_output=False)
    output = result.output.strip()
    if not output:
        # Some versions print nothing for an empty table even with -j
        return TcCapabilities(json_output=True)
    try:
        json.loads(output)
    except ValueError:
        return TcCapabilities(json_output=False)
    return TcCapabilities(json_output=True)


def run_preflight(executor: CommandExecutor, settings: Settings) -> TcCapabilities:
    """Verify this host can run the hook at all.

    Raises:
        EnvironmentCheckError: not root, tools missing, or tc unusable
    """
    if settings.require_root and os.geteuid() != 0:
        raise EnvironmentCheckError("This hook must be run as root.")

    search_path = command_env()["PATH"]
    for cmd in REQUIRED_COMMANDS:
        if shutil.which(cmd, path=search_path) is None:
            raise EnvironmentCheckError(f"Required command '{cmd}' not found")

    result = executor.tc("qdisc", "show", "dev", "lo", quiet=True)
    if not result.ok:
        raise EnvironmentCheckError(
            f"'tc' command failed. Lacking CAP_NET_ADMIN? ({result.output.strip()})"
        )

    state_dir = Path(settings.state_dir)
    try:
        state_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        state_dir.chmod(0o700)
    except OSError as e:
        raise EnvironmentCheckError(f"Cannot prepare state dir {state_dir}: {e}") from e

    capabilities = detect_tc_capabilities(executor)
    logger.info(f"tc JSON output {'available' if capabilities.json_output else 'unavailable'}")
    return capabilities
