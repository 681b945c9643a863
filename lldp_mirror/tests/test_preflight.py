from __future__ import annotations

import os
from pathlib import Path

import pytest

import lldp_mirror.preflight as preflight
from lldp_mirror.errors import EnvironmentCheckError
from lldp_mirror.network.cmd import CommandResult
from lldp_mirror.preflight import detect_tc_capabilities, run_preflight


@pytest.fixture
def tools_present(monkeypatch):
    monkeypatch.setattr(preflight.shutil, "which", lambda cmd, path=None: f"/usr/sbin/{cmd}")


def test_preflight_passes(fake_tc, test_settings, tools_present):
    capabilities = run_preflight(fake_tc, test_settings)

    assert capabilities.json_output is True
    state_dir = Path(test_settings.state_dir)
    assert state_dir.is_dir()
    assert state_dir.stat().st_mode & 0o777 == 0o700


def test_requires_root(fake_tc, test_settings, tools_present, monkeypatch):
    monkeypatch.setattr(os, "geteuid", lambda: 1000)
    settings = test_settings.model_copy(update={"require_root": True})

    with pytest.raises(EnvironmentCheckError, match="root"):
        run_preflight(fake_tc, settings)
    assert fake_tc.commands == []


def test_missing_command(fake_tc, test_settings, monkeypatch):
    monkeypatch.setattr(preflight.shutil, "which", lambda cmd, path=None: None if cmd == "ip" else "/sbin/tc")

    with pytest.raises(EnvironmentCheckError, match="'ip' not found"):
        run_preflight(fake_tc, test_settings)


def test_tc_without_privilege(fake_tc, test_settings, tools_present, monkeypatch):
    monkeypatch.setattr(
        fake_tc, "tc",
        lambda *args, **kwargs: CommandResult(("tc", *args), 2, "RTNETLINK answers: Operation not permitted"),
    )

    with pytest.raises(EnvironmentCheckError, match="CAP_NET_ADMIN"):
        run_preflight(fake_tc, test_settings)


def test_text_only_tc_detected(fake_tc, test_settings, tools_present):
    fake_tc.json_supported = False
    assert run_preflight(fake_tc, test_settings).json_output is False


@pytest.mark.parametrize(
    "rc, output, expected",
    [
        (0, "[]", True),
        (0, "", True),
        (0, "filter parent ffff: protocol all pref 1 u32", False),
        (255, 'Option "-j" is unknown', False),
    ],
)
def test_detect_tc_capabilities(fake_tc, monkeypatch, rc, output, expected):
    monkeypatch.setattr(fake_tc, "tc", lambda *args, **kwargs: CommandResult(("tc", *args), rc, output))
    assert detect_tc_capabilities(fake_tc).json_output is expected
