"""Parsers for `tc filter show` output.

Two renderings exist: `tc -j filter show ...` (JSON, preferred) and the
plain text form printed by every iproute2 version. Both are normalized to
a list of FilterEntry.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass(frozen=True)
class FilterEntry:
    """One line/object of filter output."""

    pref: int | None
    handle: str | None
    kind: str | None = None
    protocol: str | None = None
    mirror_to: frozenset[str] = field(default_factory=frozenset)


def _iter_mirred_actions(node: Any) -> Iterator[dict]:
    if isinstance(node, dict):
        if node.get("kind") == "mirred":
            yield node
        for value in node.values():
            yield from _iter_mirred_actions(value)
    elif isinstance(node, list):
        for item in node:
            yield from _iter_mirred_actions(item)


def _mirror_destination(action: dict) -> str | None:
    mode = str(action.get("mirred_action") or action.get("action") or "mirror").lower()
    if "mirror" not in mode:
        return None  # redirect
    dest = action.get("to_dev") or action.get("dev")
    return str(dest) if dest else None


def _parse_pref(raw: Any) -> int | None:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def parse_filters_json(output: str) -> list[FilterEntry]:
    """Parse `tc -j filter show` output.

    Raises:
        ValueError: output is not a JSON list of filter objects
    """
    text = (output or "").strip()
    if not text:
        return []

    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON list, got {type(data).__name__}")

    entries: list[FilterEntry] = []
    for obj in data:
        if not isinstance(obj, dict):
            continue
        options = obj.get("options") or {}
        handle = None
        if isinstance(options, dict):
            handle = options.get("fh") or options.get("handle")
        handle = handle or obj.get("handle")
        mirrors = set()
        for action in _iter_mirred_actions(options):
            dest = _mirror_destination(action)
            if dest:
                mirrors.add(dest)
        entries.append(
            FilterEntry(
                pref=_parse_pref(obj.get("pref")),
                handle=str(handle) if handle is not None else None,
                kind=obj.get("kind"),
                protocol=obj.get("protocol"),
                mirror_to=frozenset(mirrors),
            )
        )
    return entries


_FILTER_LINE = re.compile(r"^filter\s")
_PREF = re.compile(r"\bpref\s+(\d+)(?:\s+(\w+))?")
_PROTOCOL = re.compile(r"\bprotocol\s+(\S+)")
_HANDLE = re.compile(r"\b(?:fh|handle)\s+([0-9a-fA-Fx:]+)")
# "action order 1: mirred (Egress Mirror to device tap100i0) pipe"
_MIRROR_TO_DEVICE = re.compile(r"Mirror to device\s+([^\s)]+)\)?", re.IGNORECASE)
# Older/abbreviated renderings: "mirror dev tap100i0"
_MIRROR_DEV = re.compile(r"\bmirror\s+dev\s+([A-Za-z0-9._:@-]+)")


def parse_filters_text(output: str) -> list[FilterEntry]:
    """Parse plain `tc filter show` output into filter entries.

    A block starts at each line beginning with "filter"; the indented
    lines that follow (match keys, actions, stats) belong to it.
    """
    blocks: list[list[str]] = []
    for line in (output or "").splitlines():
        if _FILTER_LINE.match(line):
            blocks.append([line])
        elif blocks and line.strip():
            blocks[-1].append(line)

    entries: list[FilterEntry] = []
    for block in blocks:
        head = block[0]
        pref_match = _PREF.search(head)
        proto_match = _PROTOCOL.search(head)
        handle_match = _HANDLE.search(head)
        body = "\n".join(block)
        mirrors = set(_MIRROR_TO_DEVICE.findall(body)) | set(_MIRROR_DEV.findall(body))
        entries.append(
            FilterEntry(
                pref=int(pref_match.group(1)) if pref_match else None,
                handle=handle_match.group(1) if handle_match else None,
                kind=pref_match.group(2) if pref_match else None,
                protocol=proto_match.group(1) if proto_match else None,
                mirror_to=frozenset(mirrors),
            )
        )
    return entries


def mirror_destinations(entries: list[FilterEntry]) -> frozenset[str]:
    """Union of all mirror destinations across filter entries."""
    dests: set[str] = set()
    for entry in entries:
        dests |= entry.mirror_to
    return frozenset(dests)


def handles_mirroring_to(entries: list[FilterEntry], destination: str, pref: int | None = None) -> set[str]:
    """Handles of filters (optionally at one priority) mirroring to destination."""
    return {
        entry.handle
        for entry in entries
        if entry.handle
        and destination in entry.mirror_to
        and (pref is None or entry.pref == pref)
    }
