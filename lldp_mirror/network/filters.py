"""Readers for the ingress filter table of one interface.

The JSON rendering of `tc` is not available on every deployed iproute2,
so the reader is chosen once per run from the probed capabilities and
used for every query afterwards.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from lldp_mirror.network.cmd import CommandExecutor
from lldp_mirror.network.tc_output import FilterEntry, parse_filters_json, parse_filters_text

logger = logging.getLogger(__name__)

INGRESS_PARENT = "ffff:"


@dataclass(frozen=True)
class TcCapabilities:
    """What the installed tc binary supports."""

    json_output: bool = False


class FilterReader(ABC):
    """Reads the ingress filters of an interface."""

    name: str = ""

    def __init__(self, executor: CommandExecutor):
        self.executor = executor

    @abstractmethod
    def read(self, interface: str) -> list[FilterEntry]:
        """Return the ingress filters of `interface` (empty if none)."""


class JsonFilterReader(FilterReader):
    """Uses `tc -j filter show`."""

    name = "json"

    def read(self, interface: str) -> list[FilterEntry]:
        result = self.executor.tc(
            "-j", "filter", "show", "dev", interface, "parent", INGRESS_PARENT, quiet=True
        )
        if not result.ok:
            return []
        try:
            return parse_filters_json(result.output)
        except ValueError as e:
            logger.warning(f"Unparseable tc JSON for {interface}: {e}")
            return []


class TextFilterReader(FilterReader):
    """Uses plain `tc filter show`."""

    name = "text"

    def read(self, interface: str) -> list[FilterEntry]:
        result = self.executor.tc(
            "filter", "show", "dev", interface, "parent", INGRESS_PARENT, quiet=True
        )
        if not result.ok:
            return []
        return parse_filters_text(result.output)


def select_filter_reader(executor: CommandExecutor, capabilities: TcCapabilities) -> FilterReader:
    """Pick the reader for this run."""
    if capabilities.json_output:
        reader: FilterReader = JsonFilterReader(executor)
    else:
        reader = TextFilterReader(executor)
    logger.debug(f"Using {reader.name} tc filter output")
    return reader
