"""Desired-state parser for a guest's `.lldp` mirror file.

Grammar, one entry per line:

    # comment
    lldp_mirror_net0=bond0
    lldp_mirror_net1 = eno1   # trailing comment

Invalid lines are logged and skipped; they never abort the parse.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable

from lldp_mirror.models import MirrorSpec, WantedState

logger = logging.getLogger(__name__)

MIRROR_KEY = re.compile(r"^lldp_mirror_net([0-9]+)$")
PHYSICAL_IFNAME = re.compile(r"^[A-Za-z0-9._:-]+$")
IFNAMSIZ = 15  # kernel limit, excluding the trailing NUL

_INLINE_COMMENT = re.compile(r"\s*#.*$")
_WHITESPACE = re.compile(r"\s+")


def is_valid_physical_interface(name: str) -> bool:
    return bool(name) and len(name) <= IFNAMSIZ and bool(PHYSICAL_IFNAME.match(name))


def parse_mirror_lines(text: str, interface_name: Callable[[int], str]) -> WantedState:
    """Parse mirror file content.

    Args:
        text: File content
        interface_name: Maps a slot number to the guest interface name

    Returns:
        WantedState (possibly empty)
    """
    wanted: WantedState = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.rstrip("\r").strip()
        if not line or line.startswith("#"):
            continue

        key, sep, value = line.partition("=")
        if not sep:
            logger.warning(f"Line {lineno}: skipping, no '=' in {line!r}")
            continue

        key = key.strip()
        match = MIRROR_KEY.match(key)
        if not match:
            logger.warning(f"Line {lineno}: skipping invalid key '{key}'")
            continue

        value = _WHITESPACE.sub("", _INLINE_COMMENT.sub("", value))
        if not value:
            logger.warning(f"Line {lineno}: skipping empty value for {key}")
            continue
        if not is_valid_physical_interface(value):
            logger.warning(f"Line {lineno}: skipping invalid physical interface '{value}' for {key}")
            continue

        slot = int(match.group(1))
        guest_if = interface_name(slot)
        if guest_if in wanted:
            logger.warning(f"Line {lineno}: {key} declared again, replacing {wanted[guest_if].physical_interface}")
        wanted[guest_if] = MirrorSpec(guest_interface=guest_if, physical_interface=value, slot=slot)
        logger.info(f"WANTED: {guest_if} <-> {value} (net {slot})")

    return wanted


def parse_wanted_state(path: str | Path, interface_name: Callable[[int], str]) -> WantedState | None:
    """Read a guest's mirror file.

    Returns:
        WantedState, or None when the file is missing or has no valid entries
    """
    path = Path(path)
    try:
        # Undecodable bytes become U+FFFD and fail interface name validation
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        logger.info(f"No mirror config file at {path}")
        return None
    except OSError as e:
        logger.warning(f"Cannot read mirror config {path}: {e}")
        return None

    wanted = parse_mirror_lines(text, interface_name)
    if not wanted:
        logger.info(f"Mirror config {path} has no valid entries")
        return None
    return wanted
