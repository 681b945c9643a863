"""Running-state prober: which interfaces currently mirror where."""

from __future__ import annotations

import logging
from typing import Iterable

from lldp_mirror.models import RunningState
from lldp_mirror.network.cmd import CommandExecutor
from lldp_mirror.network.filters import FilterReader
from lldp_mirror.network.tc_output import mirror_destinations

logger = logging.getLogger(__name__)


class RunningStateProber:
    """Snapshots active mirror actions on a set of interfaces.

    Read-only. Interfaces that do not exist are left out of the result.
    """

    def __init__(self, executor: CommandExecutor, reader: FilterReader):
        self.executor = executor
        self.reader = reader

    def probe(self, interfaces: Iterable[str]) -> RunningState:
        running: RunningState = {}
        for iface in sorted(set(interfaces)):
            if not self.executor.link_exists(iface):
                continue
            dests = mirror_destinations(self.reader.read(iface))
            running[iface] = dests
            for dest in sorted(dests):
                logger.debug(f"RUNNING: {iface} -> {dest}")
        return running
