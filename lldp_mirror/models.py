"""Value types shared by the parser, prober, state store and engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Phase(str, Enum):
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"

    @classmethod
    def from_token(cls, token: str | None) -> "Phase | None":
        """Map a lifecycle token (Proxmox hook phase or literal) to a Phase.

        Returns None for phases the hook does not act on.
        """
        return PHASE_TOKENS.get((token or "").strip().lower())


PHASE_TOKENS: dict[str, Phase] = {
    "activate": Phase.ACTIVATE,
    "post-start": Phase.ACTIVATE,
    "deactivate": Phase.DEACTIVATE,
    "pre-stop": Phase.DEACTIVATE,
}


class Direction(str, Enum):
    """Which way a single mirror rule copies frames."""

    PHYS_TO_GUEST = "phys_to_guest"
    GUEST_TO_PHYS = "guest_to_phys"

    def endpoints(self, spec: "MirrorSpec") -> tuple[str, str]:
        """Return (source interface, destination interface) for this direction."""
        if self is Direction.PHYS_TO_GUEST:
            return spec.physical_interface, spec.guest_interface
        return spec.guest_interface, spec.physical_interface


@dataclass(frozen=True)
class MirrorSpec:
    """One desired pairing of a guest interface with a physical interface."""

    guest_interface: str  # e.g. "tap100i0"
    physical_interface: str  # e.g. "bond0"
    slot: int  # N of lldp_mirror_netN

    def __post_init__(self):
        if self.slot < 0:
            raise ValueError(f"slot must be >= 0, got {self.slot}")


# guest interface -> MirrorSpec
WantedState = dict[str, MirrorSpec]

# interface -> destinations it currently mirrors to
RunningState = dict[str, frozenset[str]]


def running_has(running: RunningState, source: str, destination: str) -> bool:
    """Return True if `source` is observed mirroring to `destination`."""
    return destination in running.get(source, frozenset())


def pair_directions_present(running: RunningState, spec: MirrorSpec) -> dict[Direction, bool]:
    return {
        direction: running_has(running, *direction.endpoints(spec))
        for direction in Direction
    }


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""

    phase: str
    created: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    planned: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.removed)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "created": list(self.created),
            "removed": list(self.removed),
            "unchanged": list(self.unchanged),
            "failed": list(self.failed),
            "planned": list(self.planned),
        }
