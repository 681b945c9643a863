"""Per-guest record of the filter handles this hook created.

One file per guest (`<state_dir>/<guest>.state`), `key=value` per line,
keyed by direction and slot:

    phys_to_guest_handle_0=800::800
    guest_to_phys_handle_0=800::801

Every mutation holds an exclusive flock on `<guest>.lock` for the
read-modify-write only, and replaces the state file via temp file + rename,
so a crash leaves either the old or the new record, never a torn one.
"""

from __future__ import annotations

import fcntl
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from lldp_mirror.errors import StateStoreError
from lldp_mirror.models import Direction

logger = logging.getLogger(__name__)


def state_key(direction: Direction, slot: int) -> str:
    return f"{direction.value}_handle_{slot}"


def parse_state(text: str) -> dict[str, str]:
    entries: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        key, sep, value = line.partition("=")
        if not sep or not key.strip() or not value.strip():
            logger.warning(f"Ignoring malformed state line: {line!r}")
            continue
        entries[key.strip()] = value.strip()
    return entries


def render_state(entries: dict[str, str]) -> str:
    return "".join(f"{key}={value}\n" for key, value in sorted(entries.items()))


class StateStore:
    """Durable handle ownership record for one guest."""

    def __init__(self, state_dir: str | Path, guest_id: str):
        self.state_dir = Path(state_dir)
        self.guest_id = str(guest_id)

    @property
    def state_path(self) -> Path:
        return self.state_dir / f"{self.guest_id}.state"

    @property
    def lock_path(self) -> Path:
        return self.state_dir / f"{self.guest_id}.lock"

    def read(self) -> dict[str, str]:
        """Return all entries; an absent file means nothing is owned."""
        try:
            return parse_state(self.state_path.read_text(encoding="utf-8", errors="replace"))
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StateStoreError(f"Cannot read {self.state_path}: {e}") from e

    def get_handle(self, direction: Direction, slot: int) -> str | None:
        return self.read().get(state_key(direction, slot))

    @contextmanager
    def transaction(self) -> Generator[dict[str, str], None, None]:
        """Locked read-modify-write of the record.

        The yielded dict is written back when the block exits normally and
        discarded if it raises.
        """
        self._ensure_dir()
        try:
            lock_fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise StateStoreError(f"Cannot open lock {self.lock_path}: {e}") from e
        try:
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
            entries = self.read()
            yield entries
            self._write(entries)
        finally:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
            os.close(lock_fd)

    def record_handle(self, direction: Direction, slot: int, handle: str) -> None:
        key = state_key(direction, slot)
        with self.transaction() as entries:
            entries[key] = handle
        logger.debug(f"Recorded {key}={handle} for guest {self.guest_id}")

    def forget(self, *keys: tuple[Direction, int]) -> None:
        """Drop the entries for the given (direction, slot) pairs."""
        with self.transaction() as entries:
            for direction, slot in keys:
                entries.pop(state_key(direction, slot), None)

    def _ensure_dir(self) -> None:
        try:
            self.state_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            raise StateStoreError(f"Cannot create state dir {self.state_dir}: {e}") from e

    def _write(self, entries: dict[str, str]) -> None:
        try:
            if not entries:
                self.state_path.unlink(missing_ok=True)
                return

            tmp_path = self.state_path.with_suffix(".tmp")
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(render_state(entries))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.state_path)

            dir_fd = os.open(self.state_dir, os.O_RDONLY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        except OSError as e:
            raise StateStoreError(f"Cannot write {self.state_path}: {e}") from e
