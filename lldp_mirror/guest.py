"""Proxmox guest lookup and mirror-config file management."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from lldp_mirror.config import Settings

logger = logging.getLogger(__name__)

INLINE_KEY_PREFIX = "lldp_mirror_net"
_GUEST_ID = re.compile(r"^[0-9]+$")


class GuestKind(str, Enum):
    QEMU = "qemu"
    LXC = "lxc"

    @property
    def interface_prefix(self) -> str:
        return "tap" if self is GuestKind.QEMU else "veth"


@dataclass(frozen=True)
class Guest:
    """A VM or container and the files describing it."""

    guest_id: str
    kind: GuestKind
    config_path: Path  # <id>.conf
    mirror_config_path: Path  # <id>.lldp

    def interface_name(self, slot: int) -> str:
        """Host-side interface of network slot N (e.g. tap100i0, veth101i1)."""
        return f"{self.kind.interface_prefix}{self.guest_id}i{slot}"


def is_valid_guest_id(guest_id: str) -> bool:
    return bool(_GUEST_ID.match(guest_id or ""))


def locate_guest(guest_id: str, settings: Settings) -> Guest | None:
    """Find the guest's config; QEMU is checked before LXC.

    Returns:
        Guest, or None if no config exists for this id
    """
    if not is_valid_guest_id(guest_id):
        logger.error(f"Guest id invalid or missing: '{guest_id}'")
        return None

    for kind, directory in (
        (GuestKind.QEMU, Path(settings.pve_qemu_dir)),
        (GuestKind.LXC, Path(settings.pve_lxc_dir)),
    ):
        conf = directory / f"{guest_id}.conf"
        if conf.is_file():
            guest = Guest(
                guest_id=guest_id,
                kind=kind,
                config_path=conf,
                mirror_config_path=directory / f"{guest_id}.lldp",
            )
            logger.info(f"Detected {kind.value} guest {guest_id}; mirror config {guest.mirror_config_path}")
            return guest

    return None


def _atomic_write(path: Path, content: str) -> None:
    tmp_path = path.with_name(f".{path.name}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(content)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


def migrate_inline_config(guest: Guest) -> bool:
    """Move `lldp_mirror_netN=` lines from the guest config to its .lldp file.

    Proxmox refuses guest configs with unknown keys, so mirror settings
    typed into <id>.conf are relocated. The .lldp file is replaced with the
    inline lines; <id>.conf is only rewritten if it changes.

    Returns:
        True if inline lines were found and moved
    """
    try:
        content = guest.config_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        # Rewriting would corrupt the guest config; leave it alone
        logger.warning(f"{guest.config_path} is not valid UTF-8, skipping inline config migration: {e}")
        return False
    except OSError as e:
        logger.warning(f"Cannot read {guest.config_path}: {e}")
        return False

    lines = content.splitlines(keepends=True)
    inline = [line for line in lines if line.startswith(INLINE_KEY_PREFIX)]
    if not inline:
        return False

    logger.info(
        f"Found {len(inline)} {INLINE_KEY_PREFIX}N line(s) in {guest.config_path}; "
        f"moving them to {guest.mirror_config_path}"
    )
    mirror_content = "".join(line if line.endswith("\n") else line + "\n" for line in inline)
    _atomic_write(guest.mirror_config_path, mirror_content)

    remaining = "".join(line for line in lines if not line.startswith(INLINE_KEY_PREFIX))
    if remaining != content:
        _atomic_write(guest.config_path, remaining)
        logger.info(f"Removed {INLINE_KEY_PREFIX}N lines from {guest.config_path}")
    return True
