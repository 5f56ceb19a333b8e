"""Turn a LaunchConfig plus host capabilities into a QEMU command line.

Each step takes the command built so far and returns an extended copy. The
steps run in a fixed order so the same inputs always produce the same
command, and so paired tokens (``-drive`` and its attribute string, for
instance) stay adjacent.
"""

from __future__ import annotations

import shlex

from vmlauncher.constants import LOOPBACK_ADDRESS, QEMU_BINARY
from vmlauncher.exceptions import UnsupportedModeError
from vmlauncher.models import BootMode, CapabilityReport, CommandSpec, FirmwareMode, LaunchConfig
from vmlauncher.utils import log


def _option_value(value) -> str:
    """Escape a value for a QEMU ``key=value,...`` option string (``,`` becomes ``,,``)."""
    return str(value).replace(",", ",,")


def _acceleration(spec: CommandSpec, caps: CapabilityReport) -> CommandSpec:
    if caps.acceleration_available:
        return spec.extend("-enable-kvm", "-cpu", "host")
    return spec


def _resources(spec: CommandSpec, cfg: LaunchConfig) -> CommandSpec:
    return spec.extend("-m", str(cfg.resources.memory_mb), "-smp", str(cfg.resources.cores))


def _primary_storage(spec: CommandSpec, cfg: LaunchConfig) -> CommandSpec:
    return spec.extend(
        "-drive", f"file={_option_value(cfg.disk.path)},if=virtio,cache=writeback,format={cfg.disk.format}"
    )


def _firmware(spec: CommandSpec, cfg: LaunchConfig, caps: CapabilityReport) -> CommandSpec:
    if cfg.firmware is not FirmwareMode.UEFI:
        return spec
    code = caps.firmware_for(FirmwareMode.UEFI)
    if code is None:
        log("WARN", "FIRMWARE=uefi requested but no OVMF/EDK2 firmware found; falling back to legacy BIOS.")
        return spec
    return spec.extend(
        "-drive",
        f"if=pflash,format=raw,readonly=on,file={_option_value(code)}",
        "-drive",
        f"if=pflash,format=raw,file={_option_value(cfg.firmware_vars)}",
    )


def _boot_source(spec: CommandSpec, cfg: LaunchConfig) -> CommandSpec:
    if cfg.boot_mode is BootMode.INSTALL:
        return spec.extend("-cdrom", str(cfg.media.path), "-boot", "d")
    if cfg.boot_mode is BootMode.BOOT:
        return spec.extend("-boot", "c")
    raise UnsupportedModeError(f"Unknown BOOT_MODE='{cfg.boot_mode}'. Use 'install' or 'boot'.")


def _network(spec: CommandSpec, cfg: LaunchConfig) -> CommandSpec:
    netdev = "user,id=net0"
    if cfg.network.host_ssh_port is not None:
        netdev += f",hostfwd=tcp::{cfg.network.host_ssh_port}-:{cfg.network.guest_ssh_port}"
    return spec.extend("-netdev", netdev, "-device", "virtio-net-pci,netdev=net0")


def _display(spec: CommandSpec, cfg: LaunchConfig) -> CommandSpec:
    if cfg.display.enabled:
        # Raw VNC stays on loopback; websockify is the only external entry point.
        return spec.extend("-vnc", f"{LOOPBACK_ADDRESS}:{cfg.display.display_index}")
    return spec.extend("-nographic", "-serial", "mon:stdio")


def plan(cfg: LaunchConfig, caps: CapabilityReport) -> CommandSpec:
    if not isinstance(cfg.boot_mode, BootMode):
        raise UnsupportedModeError(f"Unknown BOOT_MODE='{cfg.boot_mode}'. Use 'install' or 'boot'.")

    spec = CommandSpec(QEMU_BINARY)
    spec = _acceleration(spec, caps)
    spec = _resources(spec, cfg)
    spec = _primary_storage(spec, cfg)
    spec = _firmware(spec, cfg, caps)
    spec = _boot_source(spec, cfg)
    spec = _network(spec, cfg)
    spec = _display(spec, cfg)
    return spec


def format_command(spec: CommandSpec) -> str:
    return " ".join(shlex.quote(token) for token in spec.argv)
