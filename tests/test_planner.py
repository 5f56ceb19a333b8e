"""Tests for vmlauncher.planner module."""

from __future__ import annotations

import dataclasses

import pytest

from vmlauncher.exceptions import UnsupportedModeError
from vmlauncher.models import (
    BootMode,
    CapabilityReport,
    DiskSpec,
    DisplaySpec,
    FirmwareMode,
    NetworkSpec,
)
from vmlauncher.planner import format_command, plan


class TestAcceleration:
    def test_kvm_flags_when_available(self, default_launch_config, kvm_caps):
        spec = plan(default_launch_config, kvm_caps)
        assert spec.args[:3] == ("-enable-kvm", "-cpu", "host")

    def test_no_kvm_flags_when_unavailable(self, default_launch_config, no_kvm_caps):
        spec = plan(default_launch_config, no_kvm_caps)
        assert not spec.has_flag("-enable-kvm")
        assert not spec.has_flag("-cpu")


class TestResourcesAndStorage:
    def test_memory_and_cores(self, default_launch_config, no_kvm_caps):
        spec = plan(default_launch_config, no_kvm_caps)
        assert spec.args[:4] == ("-m", "2048", "-smp", "2")

    def test_drive_attributes_follow_flag(self, default_launch_config, no_kvm_caps):
        spec = plan(default_launch_config, no_kvm_caps)
        drives = spec.values_for("-drive")
        assert drives == [f"file={default_launch_config.disk.path},if=virtio,cache=writeback,format=qcow2"]

    def test_commas_in_paths_are_doubled(self, launch_config_factory, tmp_path):
        cfg = launch_config_factory(
            firmware=FirmwareMode.UEFI,
            disk=DiskSpec(path=tmp_path / "images" / "web,01.qcow2", size="20G"),
            firmware_vars=tmp_path / "state" / "firmware" / "web,01.qcow2-vars.fd",
        )
        code = tmp_path / "ovmf,code.fd"
        caps = CapabilityReport(acceleration_available=False, firmware_files={FirmwareMode.UEFI: code})
        drives = plan(cfg, caps).values_for("-drive")
        assert drives[0].startswith(f"file={tmp_path}/images/web,,01.qcow2,if=virtio")
        assert drives[1].endswith(f"file={tmp_path}/ovmf,,code.fd")
        assert drives[2].endswith("web,,01.qcow2-vars.fd")


class TestFirmware:
    def test_uefi_with_code_file(self, launch_config_factory, tmp_path, kvm_caps):
        cfg = launch_config_factory(firmware=FirmwareMode.UEFI)
        code = tmp_path / "OVMF_CODE.fd"
        caps = CapabilityReport(acceleration_available=True, firmware_files={FirmwareMode.UEFI: code})
        drives = plan(cfg, caps).values_for("-drive")
        assert drives[1] == f"if=pflash,format=raw,readonly=on,file={code}"
        assert drives[2] == f"if=pflash,format=raw,file={cfg.firmware_vars}"

    def test_uefi_without_code_file_falls_back(self, launch_config_factory, kvm_caps, capsys):
        cfg = launch_config_factory(firmware=FirmwareMode.UEFI)
        spec = plan(cfg, kvm_caps)
        assert not any("pflash" in value for value in spec.values_for("-drive"))
        assert "falling back to legacy BIOS" in capsys.readouterr().out

    def test_legacy_ignores_found_firmware(self, launch_config_factory, tmp_path):
        cfg = launch_config_factory()
        caps = CapabilityReport(acceleration_available=False, firmware_files={FirmwareMode.UEFI: tmp_path / "c.fd"})
        assert len(plan(cfg, caps).values_for("-drive")) == 1


class TestBootSource:
    def test_install_attaches_cdrom_and_boots_it(self, default_launch_config, no_kvm_caps):
        spec = plan(default_launch_config, no_kvm_caps)
        assert spec.values_for("-cdrom") == [str(default_launch_config.media.path)]
        assert spec.values_for("-boot") == ["d"]

    def test_boot_never_references_media(self, launch_config_factory, no_kvm_caps):
        cfg = launch_config_factory(boot_mode=BootMode.BOOT)
        spec = plan(cfg, no_kvm_caps)
        assert not spec.has_flag("-cdrom")
        assert spec.values_for("-boot") == ["c"]
        assert all(str(cfg.media.path) not in token for token in spec.args)

    def test_unknown_boot_mode_raises(self, launch_config_factory, no_kvm_caps):
        cfg = launch_config_factory(boot_mode="netboot")
        with pytest.raises(UnsupportedModeError, match="BOOT_MODE"):
            plan(cfg, no_kvm_caps)


class TestNetwork:
    def test_ssh_forward(self, default_launch_config, no_kvm_caps):
        spec = plan(default_launch_config, no_kvm_caps)
        assert spec.values_for("-netdev") == ["user,id=net0,hostfwd=tcp::2222-:22"]
        assert spec.values_for("-device") == ["virtio-net-pci,netdev=net0"]

    def test_no_forward_when_port_unset(self, launch_config_factory, no_kvm_caps):
        cfg = launch_config_factory(network=NetworkSpec(host_ssh_port=None))
        spec = plan(cfg, no_kvm_caps)
        assert spec.values_for("-netdev") == ["user,id=net0"]
        assert not any("hostfwd" in token for token in spec.args)


class TestDisplay:
    def test_graphical_binds_loopback(self, launch_config_factory, no_kvm_caps):
        cfg = launch_config_factory(display=DisplaySpec(enabled=True, display_index=1))
        spec = plan(cfg, no_kvm_caps)
        assert spec.values_for("-vnc") == ["127.0.0.1:1"]
        assert cfg.display.vnc_port == 5901
        assert not spec.has_flag("-nographic")

    def test_headless_uses_serial_stdio(self, default_launch_config, no_kvm_caps):
        spec = plan(default_launch_config, no_kvm_caps)
        assert not spec.has_flag("-vnc")
        assert spec.has_flag("-nographic")
        assert spec.values_for("-serial") == ["mon:stdio"]
        assert spec.args[-3:] == ("-nographic", "-serial", "mon:stdio")


class TestDeterminism:
    def test_same_inputs_same_command(self, default_launch_config, kvm_caps):
        assert plan(default_launch_config, kvm_caps) == plan(default_launch_config, kvm_caps)

    def test_full_install_command(self, default_launch_config, no_kvm_caps):
        cfg = default_launch_config
        spec = plan(cfg, no_kvm_caps)
        assert spec.argv == [
            "qemu-system-x86_64",
            "-m", "2048",
            "-smp", "2",
            "-drive", f"file={cfg.disk.path},if=virtio,cache=writeback,format=qcow2",
            "-cdrom", str(cfg.media.path),
            "-boot", "d",
            "-netdev", "user,id=net0,hostfwd=tcp::2222-:22",
            "-device", "virtio-net-pci,netdev=net0",
            "-nographic", "-serial", "mon:stdio",
        ]

    def test_config_is_not_mutated(self, default_launch_config, kvm_caps):
        before = dataclasses.replace(default_launch_config)
        plan(default_launch_config, kvm_caps)
        assert default_launch_config == before


def test_format_command_quotes_tokens(launch_config_factory, no_kvm_caps):
    cfg = launch_config_factory(network=NetworkSpec(host_ssh_port=None))
    line = format_command(plan(cfg, no_kvm_caps))
    assert line.startswith("qemu-system-x86_64 -m 2048 -smp 2 ")
    assert "mon:stdio" in line
