"""Exceptions raised by the mirroring hook."""

from __future__ import annotations


class MirrorError(Exception):
    """Base class for hook errors."""


class EnvironmentCheckError(MirrorError):
    """The host cannot run reconciliation at all (missing tools, privilege).

    Fatal for the whole invocation.
    """


class RuleCreationError(MirrorError):
    """One direction of a mirror pair could not be created or confirmed."""

    def __init__(self, message: str, interface: str | None = None):
        self.interface = interface
        super().__init__(message)


class StateStoreError(MirrorError):
    """The per-guest state file or its lock could not be accessed."""
