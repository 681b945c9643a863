"""Host lldpd service handling."""

from __future__ import annotations

import logging

from lldp_mirror.network.cmd import CommandExecutor

logger = logging.getLogger(__name__)

LLDPD_UNIT = "lldpd.service"


def restart_lldpd(executor: CommandExecutor) -> bool:
    """Restart the host lldpd so it re-announces on mirrored ports.

    Returns:
        True if the restart succeeded and the unit is active
    """
    if not executor.run(["systemctl", "cat", LLDPD_UNIT], quiet=True).ok:
        logger.warning(f"{LLDPD_UNIT} not found on this system")
        return False

    logger.info(f"Restarting host {LLDPD_UNIT}")
    if not executor.run(["systemctl", "restart", LLDPD_UNIT], description=f"restart {LLDPD_UNIT}").ok:
        return False

    if not executor.run(["systemctl", "is-active", "--quiet", LLDPD_UNIT], quiet=True).ok:
        logger.warning(f"{LLDPD_UNIT} is not active after restart")
        return False
    return True
