"""Host capability detection for vm-launcher."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Optional, Tuple

from vmlauncher.constants import KVM_DEVICE, OVMF_CODE_CANDIDATES
from vmlauncher.models import CapabilityReport, FirmwareMode
from vmlauncher.utils import log


def _check_acceleration(device: Path) -> Tuple[bool, Optional[str]]:
    """Return (available, reason). The reason explains why acceleration is off."""
    if not device.exists():
        return False, f"{device} not present inside container; QEMU will run in emulation mode (slow)"
    if os.access(device, os.R_OK) or os.access(device, os.W_OK):
        return True, None
    return False, f"{device} exists but is not accessible (permissions); KVM disabled"


def find_firmware(candidates: Iterable[Path]) -> Optional[Path]:
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def probe(
    requested_firmware: FirmwareMode,
    kvm_device: Path = KVM_DEVICE,
    firmware_candidates: Iterable[Path] = OVMF_CODE_CANDIDATES,
) -> CapabilityReport:
    """Inspect the host. Missing capabilities are reported, never raised."""
    accel, reason = _check_acceleration(kvm_device)
    firmware_files = {}
    if requested_firmware is FirmwareMode.UEFI:
        code = find_firmware(firmware_candidates)
        if code is not None:
            log("DEBUG", f"Found OVMF code file: {code}")
            firmware_files[FirmwareMode.UEFI] = code
        else:
            log("DEBUG", "No OVMF/EDK2 firmware found in any known location")
    return CapabilityReport(
        acceleration_available=accel,
        acceleration_reason=reason,
        firmware_files=firmware_files,
    )
