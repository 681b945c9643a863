"""Ingress qdisc presence on mirror source interfaces."""

from __future__ import annotations

import logging
import re

from lldp_mirror.network.cmd import CommandExecutor

logger = logging.getLogger(__name__)

# clsact also provides the ffff: ingress hook
_INGRESS_QDISC = re.compile(r"^qdisc\s+(?:ingress|clsact)\s+ffff:", re.MULTILINE)


def has_ingress_qdisc(executor: CommandExecutor, interface: str) -> bool:
    result = executor.tc("qdisc", "show", "dev", interface, quiet=True)
    return result.ok and bool(_INGRESS_QDISC.search(result.output))


def ensure_ingress_qdisc(executor: CommandExecutor, interface: str) -> bool:
    """Add an ingress qdisc to `interface` unless one is already there.

    Existing qdiscs are never replaced or deleted; other actors' filters
    may hang off them.

    Returns:
        True if the interface has an ingress qdisc afterwards
    """
    if has_ingress_qdisc(executor, interface):
        return True

    result = executor.tc(
        "qdisc", "add", "dev", interface, "ingress",
        description=f"add ingress qdisc on {interface}",
        quiet=True,
    )
    if result.ok:
        logger.info(f"Added ingress qdisc on {interface}")
        return True
    if "File exists" in result.output:
        # Added concurrently by someone else
        return True
    logger.error(
        f"Failed to add ingress qdisc on {interface}. "
        f"Cmd: '{result.command_line}'. Output: {result.output.strip()}"
    )
    return False
