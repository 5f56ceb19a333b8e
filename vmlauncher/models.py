"""Data models for vm-launcher."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from vmlauncher.constants import GUEST_SSH_PORT, NOVNC_WEB_DIR, VNC_BASE_PORT


class BootMode(str, Enum):
    INSTALL = "install"
    BOOT = "boot"


class FirmwareMode(str, Enum):
    LEGACY = "legacy"
    UEFI = "uefi"


class ProcessRole(str, Enum):
    PRIMARY = "primary"
    AUXILIARY = "auxiliary"


@dataclass(frozen=True)
class ResourceSpec:
    memory_mb: int
    cores: int


@dataclass(frozen=True)
class DiskSpec:
    path: Path
    size: str
    format: str = "qcow2"


@dataclass(frozen=True)
class MediaSpec:
    path: Path
    url: Optional[str] = None
    url_key: Optional[str] = None  # env key that supplied the URL


@dataclass(frozen=True)
class NetworkSpec:
    host_ssh_port: Optional[int] = None
    guest_ssh_port: int = GUEST_SSH_PORT


@dataclass(frozen=True)
class DisplaySpec:
    enabled: bool
    display_index: int = 1
    novnc_port: int = 6080
    web_dir: Path = NOVNC_WEB_DIR
    heartbeat: int = 30

    @property
    def vnc_port(self) -> int:
        return VNC_BASE_PORT + self.display_index


@dataclass(frozen=True)
class LaunchConfig:
    boot_mode: BootMode
    firmware: FirmwareMode
    resources: ResourceSpec
    disk: DiskSpec
    media: MediaSpec
    network: NetworkSpec
    display: DisplaySpec
    images_dir: Path
    firmware_vars: Path

    def as_settings(self) -> Dict[str, str]:
        """Render the config back into the key/value form parse_env() reads."""
        settings = {
            "BOOT_MODE": self.boot_mode.value,
            "FIRMWARE": self.firmware.value,
            "GRAPHICAL": "true" if self.display.enabled else "false",
            "MEMORY": str(self.resources.memory_mb),
            "CORES": str(self.resources.cores),
            "DISK_SIZE": self.disk.size,
            "DISK_FORMAT": self.disk.format,
            "DISK_NAME": self.disk.path.name,
            "ISO_NAME": self.media.path.name,
            "HOST_SSH_PORT": "" if self.network.host_ssh_port is None else str(self.network.host_ssh_port),
            "VNC_DISPLAY": str(self.display.display_index),
            "NOVNC_PORT": str(self.display.novnc_port),
            "NOVNC_HEARTBEAT": str(self.display.heartbeat),
            "NOVNC_WEB_DIR": str(self.display.web_dir),
            "IMAGES_DIR": str(self.images_dir),
            "STATE_DIR": str(self.firmware_vars.parent.parent),
        }
        if self.media.url:
            settings[self.media.url_key or "ISO_URL"] = self.media.url
        return settings


@dataclass(frozen=True)
class CapabilityReport:
    acceleration_available: bool
    acceleration_reason: Optional[str] = None
    firmware_files: Dict[FirmwareMode, Path] = field(default_factory=dict)

    def firmware_for(self, mode: FirmwareMode) -> Optional[Path]:
        return self.firmware_files.get(mode)


@dataclass(frozen=True)
class CommandSpec:
    """Hypervisor invocation built up one step at a time.

    Instances are immutable: ``extend`` returns a new spec, so every planning
    step can be inspected on its own.
    """

    binary: str
    args: Tuple[str, ...] = ()

    def extend(self, *tokens: str) -> "CommandSpec":
        return CommandSpec(self.binary, self.args + tuple(str(token) for token in tokens))

    @property
    def argv(self) -> List[str]:
        return [self.binary, *self.args]

    def has_flag(self, flag: str) -> bool:
        return flag in self.args

    def values_for(self, flag: str) -> List[str]:
        """Return the token following every occurrence of ``flag``."""
        values = []
        for idx, token in enumerate(self.args[:-1]):
            if token == flag:
                values.append(self.args[idx + 1])
        return values


@dataclass
class ManagedProcess:
    role: ProcessRole
    argv: List[str]
    process: subprocess.Popen

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def name(self) -> str:
        return Path(self.argv[0]).name
