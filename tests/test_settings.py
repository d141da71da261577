from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from power_orchestrator.config.settings import load_settings, settings_from_dict
from power_orchestrator.core.policy import VM_POWER


def write_settings(tmp_path: Path, payload: dict) -> Path:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_policy_overrides_apply_on_top_of_presets(tmp_path: Path):
    path = write_settings(
        tmp_path,
        {
            "policies": {
                "vm_power": {"poll_interval": 10},
                "nsx_stability": {"unreachable_interval": 120, "max_attempts": 30},
                "health_backend": {"max_attempts": 3},
            }
        },
    )

    settings = load_settings(path)

    vm = settings.policy("vm_power")
    assert vm.poll_interval == 10.0
    assert vm.max_attempts == VM_POWER.max_attempts
    assert settings.policy("ha_reconfigure").poll_interval == 5
    assert settings.stability_policy().unreachable_interval == 120.0
    assert settings.stability_policy().max_attempts == 30
    assert settings.backend_policy().max_attempts == 3


def test_unknown_policy_names_are_rejected():
    with pytest.raises(KeyError):
        settings_from_dict({"policies": {"vm_powr": {"poll_interval": 1}}})
    with pytest.raises(ValueError):
        settings_from_dict({"policies": {"vm_power": {"interval": 1}}})


def test_credentials_come_from_the_environment(tmp_path: Path):
    path = write_settings(
        tmp_path,
        {
            "endpoints": {
                "vcenter": {"address": "vc01.lab.local", "username": "administrator@vsphere.local", "password_env": "VC_PASSWORD"},
                "nsx": {"address": "nsx01.lab.local", "username": "admin", "password_env": "NSX_PASSWORD"},
            }
        },
    )
    settings = load_settings(path)

    creds = settings.credentials("vcenter", environ={"VC_PASSWORD": "s3cret"})
    assert creds.username == "administrator@vsphere.local"
    assert creds.password == "s3cret"
    assert settings.endpoint("nsx").address == "nsx01.lab.local"

    with pytest.raises(ValueError) as info:
        settings.credentials("nsx", environ={})
    assert "NSX_PASSWORD" in str(info.value)

    with pytest.raises(KeyError):
        settings.endpoint("sddc-manager")


def test_empty_file_gives_defaults(tmp_path: Path):
    settings = load_settings(write_settings(tmp_path, {}))

    assert settings.policy("vm_power") == VM_POWER
    assert settings.endpoints == {}


def test_build_sink_uses_configured_destinations(tmp_path: Path):
    log_path = tmp_path / "power.log"
    trail_path = tmp_path / "power.jsonl"
    settings = settings_from_dict({"audit": {"log_path": str(log_path), "trail_path": str(trail_path)}})

    sink = settings.build_sink(stream=io.StringIO())
    sink.info("vcenter reachable")
    sink.close()

    assert "[INFO] vcenter reachable" in log_path.read_text(encoding="utf-8")
    assert json.loads(trail_path.read_text(encoding="utf-8").splitlines()[0])["message"] == "vcenter reachable"
