from __future__ import annotations

import json
from dataclasses import dataclass, field

import pytest

from lldp_mirror.config import Settings
from lldp_mirror.engine import RuleEngine
from lldp_mirror.network.cmd import CommandExecutor, CommandResult
from lldp_mirror.network.filters import JsonFilterReader, TextFilterReader
from lldp_mirror.network.prober import RunningStateProber
from lldp_mirror.state_store import StateStore


@dataclass
class FakeFilter:
    pref: int
    handle: str
    dest: str
    protocol: str = "lldp"


@dataclass
class FakeTc(CommandExecutor):
    """In-memory stand-in for the kernel's ingress filter tables.

    Understands the ip/tc/systemctl invocations the hook issues and renders
    `tc filter show` in both JSON and plain text.
    """

    interfaces: set[str] = field(default_factory=lambda: {"lo"})
    ingress: set[str] = field(default_factory=set)
    filters: dict[str, list[FakeFilter]] = field(default_factory=dict)
    # (src, dst) whose filters exist but are never shown by `tc filter show`
    hidden: set[tuple[str, str]] = field(default_factory=set)
    # (src, dst) whose create command fails
    fail_create: set[tuple[str, str]] = field(default_factory=set)
    json_supported: bool = True
    commands: list[tuple[str, ...]] = field(default_factory=list)
    _next_handle: int = 0x800

    def __post_init__(self):
        super().__init__(timeout=1.0)

    # -- helpers for tests -------------------------------------------------

    def add_interface(self, *names: str) -> None:
        self.interfaces.update(names)

    def add_foreign_filter(self, src: str, dest: str, pref: int = 1) -> FakeFilter:
        """A mirror rule installed by some other actor."""
        self.ingress.add(src)
        flt = FakeFilter(pref=pref, handle=self._new_handle(), dest=dest)
        self.filters.setdefault(src, []).append(flt)
        return flt

    def mirrors(self, src: str) -> set[str]:
        return {f.dest for f in self.filters.get(src, [])}

    @property
    def mutations(self) -> list[tuple[str, ...]]:
        return [
            c for c in self.commands
            if c[:1] == ("tc",) and len(c) > 2 and c[2] in ("add", "del", "replace", "change")
        ]

    @property
    def deletes(self) -> list[tuple[str, ...]]:
        return [c for c in self.mutations if c[1] == "filter" and c[2] == "del"]

    def _new_handle(self) -> str:
        handle = f"800::{self._next_handle:x}"
        self._next_handle += 1
        return handle

    # -- CommandExecutor ---------------------------------------------------

    def run(self, argv, *, description="", quiet=False) -> CommandResult:
        argv = tuple(argv)
        self.commands.append(argv)
        rc, out = self._dispatch(list(argv))
        return CommandResult(argv, rc, out)

    def _dispatch(self, argv: list[str]) -> tuple[int, str]:
        if argv[:3] == ["ip", "link", "show"]:
            name = argv[3]
            if name in self.interfaces:
                return 0, f"1: {name}: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500\n"
            return 1, f'Device "{name}" does not exist.\n'
        if argv[0] == "systemctl":
            return 0, ""
        if argv[0] != "tc":
            return 127, f"{argv[0]}: command not found"

        args = argv[1:]
        as_json = False
        if args and args[0] == "-j":
            if not self.json_supported:
                return 255, 'Option "-j" is unknown, try "tc -help".\n'
            as_json = True
            args = args[1:]

        obj, verb = args[0], args[1]
        dev = args[args.index("dev") + 1] if "dev" in args else None
        if dev is not None and dev not in self.interfaces:
            return 1, f'Cannot find device "{dev}"\n'

        if obj == "qdisc" and verb == "show":
            out = "qdisc noqueue 0: root refcnt 2\n"
            if dev in self.ingress:
                out += "qdisc ingress ffff: parent ffff:fff1 ----------------\n"
            return 0, out
        if obj == "qdisc" and verb == "add":
            if dev in self.ingress:
                return 2, "RTNETLINK answers: File exists\n"
            self.ingress.add(dev)
            return 0, ""
        if obj == "filter" and verb == "show":
            return 0, self._render(dev, as_json)
        if obj == "filter" and verb == "add":
            return self._filter_add(dev, args)
        if obj == "filter" and verb == "del":
            return self._filter_del(dev, args)
        return 1, f"unsupported: {' '.join(argv)}"

    def _filter_add(self, dev: str, args: list[str]) -> tuple[int, str]:
        dest = args[-1]
        if (dev, dest) in self.fail_create:
            return 2, "RTNETLINK answers: Invalid argument\nWe have an error talking to the kernel\n"
        if dev not in self.ingress:
            return 2, "Error: Parent Qdisc doesn't exists.\nWe have an error talking to the kernel\n"
        pref = int(args[args.index("prio") + 1])
        self.filters.setdefault(dev, []).append(FakeFilter(pref=pref, handle=self._new_handle(), dest=dest))
        return 0, ""

    def _filter_del(self, dev: str, args: list[str]) -> tuple[int, str]:
        pref = int(args[args.index("prio") + 1])
        handle = args[args.index("handle") + 1]
        for flt in self.filters.get(dev, []):
            if flt.handle == handle and flt.pref == pref:
                self.filters[dev].remove(flt)
                return 0, ""
        return 2, "Error: Filter with specified priority/protocol not found.\n"

    def _visible(self, dev: str) -> list[FakeFilter]:
        if dev not in self.ingress:
            return []
        return [f for f in self.filters.get(dev, []) if (dev, f.dest) not in self.hidden]

    def _render(self, dev: str, as_json: bool) -> str:
        visible = self._visible(dev)
        if as_json:
            objs: list[dict] = []
            seen: set[int] = set()
            for i, f in enumerate(visible):
                if f.pref not in seen:
                    seen.add(f.pref)
                    objs.append({"protocol": f.protocol, "pref": f.pref, "kind": "u32", "chain": 0})
                    objs.append({
                        "protocol": f.protocol, "pref": f.pref, "kind": "u32", "chain": 0,
                        "options": {"fh": "800:", "ht_divisor": 1},
                    })
                objs.append({
                    "protocol": f.protocol, "pref": f.pref, "kind": "u32", "chain": 0,
                    "options": {
                        "fh": f.handle, "order": 2048 + i, "key_ht": "800", "bkt": "0",
                        "terminal": True, "not_in_hw": True,
                        "match": {"value": "0", "mask": "0", "offmask": "", "off": 0},
                        "actions": [{
                            "order": 1, "kind": "mirred", "mirred_action": "mirror",
                            "direction": "egress", "to_dev": f.dest,
                            "control_action": {"type": "pipe"},
                            "index": i + 1, "ref": 1, "bind": 1,
                        }],
                    },
                })
            return json.dumps(objs)

        lines: list[str] = []
        seen = set()
        for i, f in enumerate(visible):
            head = f"filter parent ffff: protocol {f.protocol} pref {f.pref} u32 chain 0 "
            if f.pref not in seen:
                seen.add(f.pref)
                lines.append(head)
                lines.append(head + "fh 800: ht divisor 1 ")
            lines.append(head + f"fh {f.handle} order {2048 + i} key ht 800 bkt 0 terminal flowid not_in_hw ")
            lines.append("  match 00000000/00000000 at 0")
            lines.append(f"\taction order 1: mirred (Egress Mirror to device {f.dest}) pipe")
            lines.append(f" \tindex {i + 1} ref 1 bind 1")
            lines.append("")
        return "\n".join(lines)


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_tc() -> FakeTc:
    return FakeTc(interfaces={"lo", "bond0", "tap100i0"})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        state_dir=str(tmp_path / "state"),
        pve_qemu_dir=str(tmp_path / "qemu-server"),
        pve_lxc_dir=str(tmp_path / "lxc"),
        log_file="",
        syslog=False,
        require_root=False,
        dry_run=False,
        restart_lldpd=False,
    )


@pytest.fixture
def store(test_settings) -> StateStore:
    return StateStore(test_settings.state_dir, "100")


@pytest.fixture(params=["json", "text"])
def reader_kind(request) -> str:
    return request.param


@pytest.fixture
def engine(fake_tc, store, test_settings, clock, reader_kind) -> RuleEngine:
    reader_cls = JsonFilterReader if reader_kind == "json" else TextFilterReader
    prober = RunningStateProber(fake_tc, reader_cls(fake_tc))
    return RuleEngine(fake_tc, prober, store, test_settings, sleep=clock.sleep, clock=clock)
