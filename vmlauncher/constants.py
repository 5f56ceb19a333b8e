"""Global constants and path configuration for vm-launcher."""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_CONFIG_PATH = Path("/config/launch.yaml")

IMAGES_DIR = Path("/images")
STATE_DIR = Path("/var/lib/vm-launcher")
NOVNC_WEB_DIR = Path("/opt/noVNC")

TRUTHY = {"1", "true", "yes", "on"}

QEMU_BINARY = "qemu-system-x86_64"
QEMU_IMG_BINARY = "qemu-img"
PROXY_BINARY = "websockify"

KVM_DEVICE = Path("/dev/kvm")

# Searched in order; first hit wins.
OVMF_CODE_CANDIDATES = (
    Path("/usr/share/edk2-ovmf/OVMF_CODE.fd"),
    Path("/usr/share/edk2/ovmf/OVMF_CODE.fd"),
    Path("/usr/share/ovmf/OVMF_CODE.fd"),
    Path("/usr/share/qemu/ovmf-x86_64-code.bin"),
    Path("/usr/share/qemu/ovmf-x64-code.bin"),
    Path("/usr/share/OVMF/OVMF_CODE.fd"),
)

GUEST_SSH_PORT = 22
VNC_BASE_PORT = 5900
LOOPBACK_ADDRESS = "127.0.0.1"
PUBLIC_ADDRESS = "0.0.0.0"

DISK_FORMATS = {"qcow2", "raw"}

DOWNLOAD_RETRIES = 5
DOWNLOAD_RETRY_DELAY = 3.0

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in {"1", "true", "yes", "on"}

DISK_SIZE_RE = re.compile(r"^\d+[KMGTkmgt]?$")

ISO_URL_SUFFIX = "_ISO_URL"
