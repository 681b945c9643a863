"""Logging setup for the hook.

Log lines carry the guest id so interleaved hook runs for different
guests can be told apart in syslog or the shared log file.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone

from lldp_mirror.config import Settings, settings

SERVICE_NAME = "lldp-mirror"
SYSLOG_IDENT = "lldp-hook"
SYSLOG_SOCKET = "/dev/log"

# Attributes every LogRecord has; anything else came in via `extra=`.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


class MirrorJSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, guest_id: str = ""):
        super().__init__()
        self.guest_id = guest_id

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": SERVICE_NAME,
            "guest_id": self.guest_id,
        }
        extra = {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class MirrorTextFormatter(logging.Formatter):
    """`<time> - [VMID <id>] <LEVEL> <logger>: <message>`"""

    def __init__(self, guest_id: str = ""):
        super().__init__(
            fmt="%(asctime)s - [VMID " + (guest_id or "?") + "] %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.guest_id = guest_id


def _make_formatter(log_format: str, guest_id: str) -> logging.Formatter:
    if log_format.lower() == "json":
        return MirrorJSONFormatter(guest_id=guest_id)
    return MirrorTextFormatter(guest_id=guest_id)


def setup_logging(
    guest_id: str = "",
    level: str | None = None,
    log_format: str | None = None,
    config: Settings | None = None,
) -> None:
    """Configure the root logger for one hook invocation.

    Args:
        guest_id: Guest the invocation is for (shown in every line)
        level: Overrides the configured log level
        log_format: Overrides the configured format ("text" or "json")
        config: Settings to use (module settings by default)
    """
    cfg = config or settings
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.setLevel(getattr(logging, (level or cfg.log_level).upper(), logging.INFO))
    formatter = _make_formatter(log_format or cfg.log_format, guest_id)

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(formatter)
    root.addHandler(stream)

    if cfg.log_file:
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                cfg.log_file,
                maxBytes=cfg.log_max_bytes,
                backupCount=cfg.log_backup_count,
            )
        except OSError as e:
            root.warning(f"Cannot open log file {cfg.log_file}: {e}")
        else:
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    if cfg.syslog and os.path.exists(SYSLOG_SOCKET):
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=SYSLOG_SOCKET,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
        except OSError as e:
            root.debug(f"Syslog unavailable: {e}")
        else:
            syslog_handler.ident = f"{SYSLOG_IDENT}[{os.getpid()}]: "
            syslog_handler.setFormatter(
                logging.Formatter("[VMID " + (guest_id or "?") + "] %(levelname)s %(message)s")
            )
            root.addHandler(syslog_handler)
