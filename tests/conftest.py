"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from vmlauncher.models import (
    BootMode,
    CapabilityReport,
    DiskSpec,
    DisplaySpec,
    FirmwareMode,
    LaunchConfig,
    MediaSpec,
    NetworkSpec,
    ResourceSpec,
)


def _make_config(tmp_path: Path, **overrides) -> LaunchConfig:
    images = tmp_path / "images"
    values = dict(
        boot_mode=BootMode.INSTALL,
        firmware=FirmwareMode.LEGACY,
        resources=ResourceSpec(memory_mb=2048, cores=2),
        disk=DiskSpec(path=images / "disk.qcow2", size="20G"),
        media=MediaSpec(path=images / "install.iso"),
        network=NetworkSpec(host_ssh_port=2222),
        display=DisplaySpec(enabled=False, web_dir=tmp_path / "noVNC"),
        images_dir=images,
        firmware_vars=tmp_path / "state" / "firmware" / "disk.qcow2-vars.fd",
    )
    values.update(overrides)
    return LaunchConfig(**values)


@pytest.fixture
def default_launch_config(tmp_path) -> LaunchConfig:
    """Return a LaunchConfig with the documented defaults rooted under tmp_path."""
    return _make_config(tmp_path)


@pytest.fixture
def launch_config_factory(tmp_path):
    """Build LaunchConfigs rooted under tmp_path, overriding selected fields."""

    def _factory(**overrides) -> LaunchConfig:
        return _make_config(tmp_path, **overrides)

    return _factory


@pytest.fixture
def kvm_caps() -> CapabilityReport:
    return CapabilityReport(acceleration_available=True)


@pytest.fixture
def no_kvm_caps() -> CapabilityReport:
    return CapabilityReport(acceleration_available=False, acceleration_reason="/dev/kvm not present")


# Environment variables that parse_env() reads.
_PARSE_ENV_VARS = [
    "BOOT_MODE",
    "FIRMWARE",
    "GRAPHICAL",
    "MEMORY",
    "CORES",
    "DISK_SIZE",
    "DISK_FORMAT",
    "DISK_NAME",
    "ISO_NAME",
    "ISO_URL",
    "OPENBSD_ISO_URL",
    "HOST_SSH_PORT",
    "VNC_DISPLAY",
    "NOVNC_PORT",
    "NOVNC_HEARTBEAT",
    "NOVNC_WEB_DIR",
    "IMAGES_DIR",
    "STATE_DIR",
    "CONFIG_FILE",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Clear all environment variables that parse_env() reads and disable the default config file."""
    for key in _PARSE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("vmlauncher.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
