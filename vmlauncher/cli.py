"""CLI entry points for vm-launcher."""

from __future__ import annotations

import argparse
from typing import List, Optional, Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vmlauncher.artifacts import ensure_disk, ensure_firmware_vars, ensure_images_dir, ensure_install_media
from vmlauncher.capabilities import probe
from vmlauncher.config import parse_env
from vmlauncher.constants import QEMU_BINARY
from vmlauncher.exceptions import ManagerError
from vmlauncher.models import BootMode, CapabilityReport, CommandSpec, FirmwareMode, LaunchConfig
from vmlauncher.planner import format_command, plan
from vmlauncher.supervisor import ProcessSupervisor
from vmlauncher.utils import log, require_binary


def show_config(cfg: LaunchConfig) -> None:
    """Print the resolved configuration as YAML (usable as CONFIG_FILE)."""
    print(yaml.safe_dump(cfg.as_settings(), sort_keys=False, default_flow_style=False), end="")


def report_capabilities(cfg: LaunchConfig, caps: CapabilityReport) -> None:
    if caps.acceleration_available:
        log("INFO", "KVM available: enabling -enable-kvm.")
    else:
        reason = caps.acceleration_reason or "KVM not available"
        log("WARN", f"{reason}. Running without -enable-kvm. Fix: add --device /dev/kvm:/dev/kvm")
    if cfg.firmware is FirmwareMode.UEFI:
        code = caps.firmware_for(FirmwareMode.UEFI)
        if code is not None:
            log("INFO", f"FIRMWARE=uefi: using OVMF code file {code}")
    else:
        log("INFO", "FIRMWARE=legacy (BIOS) selected.")


def prepare_firmware(cfg: LaunchConfig, caps: CapabilityReport) -> None:
    if cfg.firmware is not FirmwareMode.UEFI:
        return
    code = caps.firmware_for(FirmwareMode.UEFI)
    if code is not None:
        ensure_firmware_vars(code, cfg.firmware_vars)


def print_startup_banner(cfg: LaunchConfig, caps: CapabilityReport) -> None:
    """Print a visually distinct access-info banner before QEMU takes over."""
    lines: List[str] = []
    firmware = cfg.firmware.value
    if cfg.firmware is FirmwareMode.UEFI and caps.firmware_for(FirmwareMode.UEFI) is None:
        firmware = "legacy (uefi unavailable)"
    lines.append(f"  Mode: {cfg.boot_mode.value} | Firmware: {firmware}")
    lines.append(
        f"  Memory: {cfg.resources.memory_mb} MiB | CPUs: {cfg.resources.cores} | "
        f"KVM: {'yes' if caps.acceleration_available else 'no (emulation)'}"
    )
    lines.append(f"  Disk: {cfg.disk.path} ({cfg.disk.size})")
    if cfg.boot_mode is BootMode.INSTALL:
        lines.append(f"  ISO:  {cfg.media.path}")

    ports_to_publish: List[str] = []
    if cfg.network.host_ssh_port is not None:
        lines.append(f"  SSH:  port {cfg.network.host_ssh_port} -> guest:{cfg.network.guest_ssh_port}")
        ports_to_publish.append(f"-p {cfg.network.host_ssh_port}:{cfg.network.host_ssh_port}")
    else:
        lines.append("  SSH:  not forwarded (HOST_SSH_PORT is empty)")
    if cfg.display.enabled:
        lines.append(f"  VNC:  http://localhost:{cfg.display.novnc_port}/vnc.html")
        ports_to_publish.append(f"-p {cfg.display.novnc_port}:{cfg.display.novnc_port}")
    else:
        lines.append("  Console: serial on stdio (GRAPHICAL=false)")

    if ports_to_publish:
        lines.append("")
        lines.append("  Ensure docker ports are published:")
        lines.append(f"    {' '.join(ports_to_publish)}")

    max_len = max(len(line) for line in lines)
    border_len = max_len + 2
    banner_colour = "\033[0;36m"
    reset = "\033[0m"
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)
    for line in lines:
        print(f"{banner_colour}{line}{reset}", flush=True)
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)


def build_command(cfg: LaunchConfig) -> Tuple[CapabilityReport, CommandSpec]:
    caps = probe(cfg.firmware)
    report_capabilities(cfg, caps)
    return caps, plan(cfg, caps)


def launch(cfg: LaunchConfig) -> int:
    require_binary(QEMU_BINARY, "Ensure the image includes the qemu-system-x86_64 package.")
    ensure_images_dir(cfg.images_dir)
    # Media before disk: a launch that cannot boot never leaves a fresh disk behind.
    ensure_install_media(cfg.media, cfg.boot_mode)
    ensure_disk(cfg.disk)

    caps = probe(cfg.firmware)
    report_capabilities(cfg, caps)
    prepare_firmware(cfg, caps)
    command = plan(cfg, caps)

    log("INFO", "Final QEMU command:")
    log("INFO", format_command(command))
    print_startup_banner(cfg, caps)

    supervisor = ProcessSupervisor(cfg.display)
    return supervisor.run(command)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Launch a QEMU guest with optional noVNC console")
    parser.add_argument("--show-config", action="store_true", help="Show resolved configuration (YAML) and exit")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Probe the host and print the QEMU command without touching artifacts or starting processes",
    )
    args = parser.parse_args(argv)

    try:
        cfg = parse_env()
    except ManagerError as exc:
        log("ERROR", str(exc))
        return 1

    if args.show_config:
        show_config(cfg)
        return 0

    try:
        if args.dry_run:
            caps, command = build_command(cfg)
            print(format_command(command), flush=True)
            print_startup_banner(cfg, caps)
            log("INFO", "=== Dry-run complete (no VM started) ===")
            return 0
        return launch(cfg)
    except ManagerError as exc:
        log("ERROR", str(exc))
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        log("ERROR", "This is likely a bug.")
        import traceback

        traceback.print_exc()
        return 1
