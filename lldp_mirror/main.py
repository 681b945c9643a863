"""lldp-mirror-hook - Proxmox hookscript entry point.

Invoked by Proxmox as `<hook> <guest-id> <phase>`. On post-start the
guest's mirror pairs are created, on pre-stop they are removed; every
other phase is accepted and ignored.
"""

from __future__ import annotations

import argparse
import logging
import subprocess
import sys

from lldp_mirror import __version__
from lldp_mirror.config import Settings, settings
from lldp_mirror.desired_state import parse_wanted_state
from lldp_mirror.engine import RuleEngine
from lldp_mirror.errors import EnvironmentCheckError, MirrorError
from lldp_mirror.guest import is_valid_guest_id, locate_guest, migrate_inline_config
from lldp_mirror.lldpd import restart_lldpd
from lldp_mirror.logging_config import setup_logging
from lldp_mirror.models import Phase
from lldp_mirror.network.cmd import CommandExecutor
from lldp_mirror.network.filters import select_filter_reader
from lldp_mirror.network.prober import RunningStateProber
from lldp_mirror.preflight import run_preflight
from lldp_mirror.state_store import StateStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PAIR_FAILED = 1
EXIT_ENVIRONMENT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lldp-mirror-hook",
        description="Mirror LLDP frames between a guest interface and a host interface "
        "(Proxmox hookscript).",
    )
    parser.add_argument("guest_id", help="VM or container id")
    parser.add_argument(
        "phase",
        help="Lifecycle phase: post-start/activate creates rules, pre-stop/deactivate "
        "removes them; anything else is ignored",
    )
    parser.add_argument("--dry-run", action="store_true", help="Log planned changes without applying them")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: from LLDP_MIRROR_LOG_LEVEL or info)",
    )
    parser.add_argument("--log-format", choices=["text", "json"], help="Log format")
    parser.add_argument(
        "--detach",
        action="store_true",
        help="Run the hook in the background and return immediately",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def spawn_detached(argv: list[str]) -> None:
    """Re-run this hook without --detach in its own session."""
    cmd = [sys.executable, "-m", "lldp_mirror", *[a for a in argv if a != "--detach"]]
    subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )


def run(guest_id: str, phase: Phase, config: Settings, dry_run: bool = False) -> int:
    """One hook invocation for an actionable phase.

    Returns:
        Process exit status
    """
    executor = CommandExecutor(timeout=config.command_timeout)
    try:
        capabilities = run_preflight(executor, config)
    except EnvironmentCheckError as e:
        logger.critical(f"FATAL: {e}")
        return EXIT_ENVIRONMENT

    guest = locate_guest(guest_id, config)
    if guest is None:
        logger.info(f"Could not determine guest type for {guest_id}. Nothing to do.")
        return EXIT_OK

    if config.migrate_inline_config and not dry_run:
        migrate_inline_config(guest)

    wanted = parse_wanted_state(guest.mirror_config_path, guest.interface_name)
    if wanted is None:
        logger.info("No LLDP mirror configuration found. Nothing to do.")
        return EXIT_OK

    prober = RunningStateProber(executor, select_filter_reader(executor, capabilities))
    store = StateStore(config.state_dir, guest.guest_id)
    engine = RuleEngine(executor, prober, store, config, dry_run=dry_run or config.dry_run)

    try:
        report = engine.reconcile(phase, wanted)
    except MirrorError as e:
        logger.error(f"Reconciliation aborted: {e}")
        return EXIT_PAIR_FAILED

    logger.info(f"Reconcile result: {report.to_dict()}")

    if report.changed and config.restart_lldpd:
        if not restart_lldpd(executor):
            logger.warning("lldpd restart failed, continuing")

    if report.failed:
        logger.warning(f"{len(report.failed)} pair(s) failed: {', '.join(report.failed)}")
        return EXIT_PAIR_FAILED
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    args = build_parser().parse_args(argv)

    setup_logging(
        guest_id=args.guest_id,
        level=args.log_level,
        log_format=args.log_format,
        config=settings,
    )

    phase = Phase.from_token(args.phase)
    if phase is None:
        logger.info(f"Phase '{args.phase}' not handled. Nothing to do.")
        return EXIT_OK

    if not is_valid_guest_id(args.guest_id):
        logger.error(f"Guest id invalid: '{args.guest_id}' (must be numeric)")
        return EXIT_ENVIRONMENT

    if args.detach:
        spawn_detached(argv)
        return EXIT_OK

    logger.info(f"--- LLDP mirror hook {__version__} started: guest={args.guest_id}, phase={args.phase} ---")
    status = run(args.guest_id, phase, settings, dry_run=args.dry_run)
    logger.info(f"--- LLDP mirror hook finished (exit {status}) ---")
    return status


if __name__ == "__main__":
    sys.exit(main())
