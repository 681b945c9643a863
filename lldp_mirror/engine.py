"""Rule engine: reconcile wanted mirror pairs against the kernel's filters.

For every guest interface in the wanted state the engine looks at what the
ingress filter tables currently show and creates or removes only what is
missing or extra. Rules are created one direction at a time, each new
filter handle is written through to the guest's StateStore, and removal
deletes exactly those recorded handles, so filters installed by anyone
else on the same interfaces are never touched.

A pair that cannot be completely created is rolled back before
create_pair returns; a half-applied pair is never left behind.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from lldp_mirror.config import Settings
from lldp_mirror.errors import MirrorError, RuleCreationError, StateStoreError
from lldp_mirror.models import (
    Direction,
    MirrorSpec,
    Phase,
    ReconcileReport,
    RunningState,
    WantedState,
    pair_directions_present,
    running_has,
)
from lldp_mirror.network.cmd import CommandExecutor
from lldp_mirror.network.filters import INGRESS_PARENT
from lldp_mirror.network.prober import RunningStateProber
from lldp_mirror.network.qdisc import ensure_ingress_qdisc
from lldp_mirror.network.retry import BackoffPolicy, wait_until
from lldp_mirror.network.tc_output import handles_mirroring_to
from lldp_mirror.state_store import StateStore, state_key

logger = logging.getLogger(__name__)


class RuleEngine:
    """Creates, confirms and removes LLDP mirror pairs for one guest."""

    def __init__(
        self,
        executor: CommandExecutor,
        prober: RunningStateProber,
        store: StateStore,
        settings: Settings,
        *,
        dry_run: bool | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.executor = executor
        self.prober = prober
        self.reader = prober.reader
        self.store = store
        self.settings = settings
        self.dry_run = settings.dry_run if dry_run is None else dry_run
        self._sleep = sleep
        self._clock = clock

    def priority(self, slot: int) -> int:
        return self.settings.tc_prio_base + slot

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, phase: Phase | str, wanted: WantedState) -> ReconcileReport:
        """Bring the kernel's mirror rules in line with `wanted` for a phase.

        activate creates pairs not fully present; deactivate removes pairs
        with any direction present. Recorded handles of a pair with no
        direction present are dropped from the store without a delete.
        Unknown phases are reported and do nothing.
        """
        resolved = phase if isinstance(phase, Phase) else Phase.from_token(phase)
        report = ReconcileReport(phase=resolved.value if resolved else str(phase))
        if resolved is None:
            logger.warning(f"Phase '{phase}' not handled")
            return report

        running = self.prober.probe(self._interfaces(wanted.values()))
        owned = self.store.read() if resolved is Phase.DEACTIVATE else {}

        for guest_if in sorted(wanted):
            spec = wanted[guest_if]
            present = pair_directions_present(running, spec)
            pair = f"{guest_if} <-> {spec.physical_interface}"

            if resolved is Phase.ACTIVATE:
                if all(present.values()):
                    logger.info(f"CHECK: rules exist for {pair}")
                    report.unchanged.append(guest_if)
                    continue
                action = "create"
            else:
                if not any(present.values()):
                    logger.info(f"CHECK: no running rules for {pair}")
                    if any(state_key(d, spec.slot) in owned for d in Direction) and not self.dry_run:
                        self._forget_stale(spec)
                    report.unchanged.append(guest_if)
                    continue
                action = "remove"

            if self.dry_run:
                logger.info(f"DRY RUN: would {action} rules for {pair}")
                report.planned.append(f"{action} {pair}")
                continue

            logger.info(f"CHECK: {action} rules for {pair}")
            try:
                ok = self.create_pair(spec) if action == "create" else self.remove_pair(spec)
            except MirrorError as e:
                logger.error(f"FAILURE: {action} {pair}: {e}")
                ok = False

            if not ok:
                report.failed.append(guest_if)
            elif action == "create":
                report.created.append(guest_if)
            else:
                report.removed.append(guest_if)

        return report

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_pair(self, spec: MirrorSpec) -> bool:
        """Create both mirror directions for one pair.

        Returns:
            True if both directions are confirmed active. On False nothing
            this call created is left behind.
        """
        guest_if, phys_if = spec.guest_interface, spec.physical_interface
        logger.info(f"ACTION: Creating rules for {guest_if} <-> {phys_if}")

        if not self.wait_for_interface(guest_if):
            logger.error(
                f"FAILURE: interface {guest_if} did not appear within "
                f"{self.settings.interface_wait_timeout}s"
            )
            return False

        completed = False
        try:
            running = self.prober.probe([guest_if, phys_if])
            for direction in Direction:
                self._create_direction(spec, direction, running)

            if not self._wait_for_pair(spec, present=True):
                raise RuleCreationError(f"rules did not appear in time for {guest_if} <-> {phys_if}")

            completed = True
            logger.info(f"SUCCESS: bidirectional rules active for {guest_if} <-> {phys_if}")
        except RuleCreationError as e:
            logger.error(f"FAILURE: {e}")
        finally:
            if not completed:
                logger.warning(f"Cleaning up partial rules for {guest_if} <-> {phys_if}")
                self.remove_pair(spec)
        return completed

    def _create_direction(self, spec: MirrorSpec, direction: Direction, running: RunningState) -> None:
        src, dst = direction.endpoints(spec)
        prio = self.priority(spec.slot)

        owned = self.store.get_handle(direction, spec.slot)
        if owned and running_has(running, src, dst):
            logger.info(f"CHECK: {src} -> {dst} already active with owned handle {owned}")
            return

        if not ensure_ingress_qdisc(self.executor, src):
            raise RuleCreationError(f"no ingress qdisc on {src}", src)

        before = handles_mirroring_to(self.reader.read(src), dst, prio)
        result = self.executor.tc(
            "filter", "add", "dev", src, "parent", INGRESS_PARENT,
            "prio", str(prio), "protocol", self.settings.lldp_ethertype,
            "u32", "match", "u32", "0", "0",
            "action", "mirred", "egress", "mirror", "dev", dst,
            description=f"create filter on {src} -> {dst}",
        )
        if not result.ok:
            raise RuleCreationError(f"could not create filter on {src} -> {dst}", src)

        handle = self._capture_handle(src, dst, prio, before)
        if handle is None:
            raise RuleCreationError(f"could not capture handle for filter on {src} -> {dst}", src)

        try:
            self.store.record_handle(direction, spec.slot, handle)
        except StateStoreError as e:
            # An unrecorded filter could never be removed later
            self._delete_filter(src, prio, handle)
            raise RuleCreationError(f"could not record handle {handle} for {src} -> {dst}: {e}", src) from e
        logger.info(
            f"Captured handle {handle} for {src} -> {dst} "
            f"(key {state_key(direction, spec.slot)})"
        )

    def _capture_handle(self, src: str, dst: str, prio: int, before: set[str]) -> str | None:
        """Find the handle of the filter just created on `src`.

        It is the handle at `prio` mirroring to `dst` that was not there
        before the create command.
        """
        for attempt in range(self.settings.handle_capture_attempts):
            if attempt:
                self._sleep(self.settings.handle_capture_delay)
            new = handles_mirroring_to(self.reader.read(src), dst, prio) - before
            if new:
                if len(new) > 1:
                    logger.warning(f"Several new filters on {src} -> {dst}: {sorted(new)}")
                return sorted(new)[0]
        return None

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------

    def remove_pair(self, spec: MirrorSpec) -> bool:
        """Delete the recorded filters of one pair and wait until they are gone.

        Only handles recorded in the StateStore are deleted. Entries are
        dropped from the store once removal is confirmed.
        """
        guest_if, phys_if = spec.guest_interface, spec.physical_interface
        logger.info(f"ACTION: Removing rules for {guest_if} <-> {phys_if}")

        owned = self.store.read()
        prio = self.priority(spec.slot)
        for direction in Direction:
            src, dst = direction.endpoints(spec)
            handle = owned.get(state_key(direction, spec.slot))
            if not handle:
                logger.debug(f"No recorded handle for {src} -> {dst}, nothing owned")
                continue
            if not self.executor.link_exists(src):
                logger.info(f"Interface {src} no longer exists, skipping delete of {handle}")
                continue
            # The kernel may have reused the handle for someone else's filter
            if handle not in handles_mirroring_to(self.reader.read(src), dst, prio):
                logger.info(f"Recorded handle {handle} on {src} no longer mirrors to {dst}, not deleting")
                continue
            self._delete_filter(src, prio, handle)

        if not self._wait_for_pair(spec, present=False):
            logger.error(f"FAILURE: some rules may still exist for {guest_if} <-> {phys_if}")
            return False

        self.store.forget(
            (Direction.PHYS_TO_GUEST, spec.slot),
            (Direction.GUEST_TO_PHYS, spec.slot),
        )
        logger.info(f"SUCCESS: rules removed for {guest_if} <-> {phys_if}")
        return True

    def _delete_filter(self, src: str, prio: int, handle: str) -> bool:
        return self.executor.tc(
            "filter", "del", "dev", src, "parent", INGRESS_PARENT,
            "prio", str(prio), "handle", handle,
            "protocol", self.settings.lldp_ethertype, "u32",
            description=f"delete filter {handle} from {src}",
        ).ok

    def _forget_stale(self, spec: MirrorSpec) -> None:
        """Drop records of a pair whose rules are no longer observed."""
        logger.info(f"Dropping stale handle records for {spec.guest_interface} (net {spec.slot})")
        try:
            self.store.forget(
                (Direction.PHYS_TO_GUEST, spec.slot),
                (Direction.GUEST_TO_PHYS, spec.slot),
            )
        except StateStoreError as e:
            logger.warning(f"Could not drop stale records for {spec.guest_interface}: {e}")

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    def wait_for_interface(self, interface: str) -> bool:
        s = self.settings
        logger.info(f"Waiting for interface {interface} (max {s.interface_wait_timeout}s)...")
        found = wait_until(
            lambda: self.executor.link_exists(interface),
            s.interface_wait_timeout,
            BackoffPolicy(s.interface_wait_initial, s.interface_wait_factor, s.interface_wait_max_delay),
            description=f"interface {interface}",
            sleep=self._sleep,
            clock=self._clock,
        )
        if found:
            logger.info(f"Interface {interface} present.")
        return found

    def _wait_for_pair(self, spec: MirrorSpec, present: bool) -> bool:
        """Poll until both directions are observed (present) or neither is."""

        def settled() -> bool:
            running = self.prober.probe([spec.guest_interface, spec.physical_interface])
            observed = pair_directions_present(running, spec).values()
            return all(observed) if present else not any(observed)

        return wait_until(
            settled,
            self.settings.rule_confirm_timeout,
            BackoffPolicy(self.settings.rule_poll_interval),
            description=f"rules {'present' if present else 'absent'} for {spec.guest_interface}",
            sleep=self._sleep,
            clock=self._clock,
        )

    @staticmethod
    def _interfaces(specs: Iterable[MirrorSpec]) -> set[str]:
        interfaces: set[str] = set()
        for spec in specs:
            interfaces.add(spec.guest_interface)
            interfaces.add(spec.physical_interface)
        return interfaces
