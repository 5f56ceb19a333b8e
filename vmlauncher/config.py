"""Configuration loading and environment variable parsing for vm-launcher."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vmlauncher import constants
from vmlauncher.constants import DEFAULT_CONFIG_PATH, DISK_FORMATS, ISO_URL_SUFFIX
from vmlauncher.exceptions import ConfigurationError, UnsupportedModeError
from vmlauncher.models import (
    BootMode,
    DiskSpec,
    DisplaySpec,
    FirmwareMode,
    LaunchConfig,
    MediaSpec,
    NetworkSpec,
    ResourceSpec,
)
from vmlauncher.utils import get_env, get_env_bool, log, parse_int_env, validate_disk_size


def load_config_file(config_path: Path, required: bool = False) -> Dict[str, str]:
    """Read a YAML mapping of configuration keys.

    A missing file is only an error when the operator pointed CONFIG_FILE at it.
    """
    if not config_path.exists():
        if required:
            raise ConfigurationError(f"CONFIG_FILE points to a missing file: {config_path}")
        return {}
    try:
        data = yaml.safe_load(config_path.read_text())
    except OSError as exc:
        raise ConfigurationError(f"Cannot read CONFIG_FILE {config_path}: {exc}")
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"CONFIG_FILE {config_path} contains invalid YAML: {exc}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"CONFIG_FILE {config_path} must contain a mapping of KEY: value, got {type(data).__name__}"
        )
    settings: Dict[str, str] = {}
    for key, value in data.items():
        if value is None:
            settings[str(key)] = ""
        elif isinstance(value, bool):
            settings[str(key)] = "true" if value else "false"
        else:
            settings[str(key)] = str(value)
    return settings


def build_settings(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Merge the optional config file with the environment; the environment wins."""
    source = dict(os.environ if environ is None else environ)
    explicit = source.get("CONFIG_FILE")
    if explicit is not None and explicit.strip():
        file_settings = load_config_file(Path(explicit.strip()), required=True)
    else:
        file_settings = load_config_file(DEFAULT_CONFIG_PATH)
    if file_settings:
        log("DEBUG", f"Loaded {len(file_settings)} setting(s) from config file")
    merged = dict(file_settings)
    merged.update(source)
    return merged


def _parse_boot_mode(raw: str) -> BootMode:
    try:
        return BootMode(raw.strip().lower())
    except ValueError:
        raise UnsupportedModeError(f"Unknown BOOT_MODE='{raw}'. Use 'install' or 'boot'.")


def _parse_firmware(raw: str) -> FirmwareMode:
    try:
        return FirmwareMode(raw.strip().lower())
    except ValueError:
        raise ConfigurationError(f"Unknown FIRMWARE='{raw}'. Use 'legacy' or 'uefi'.")


def _artifact_name(key: str, default: str, settings: Mapping[str, str]) -> str:
    name = (get_env(key, default, environ=settings) or "").strip() or default
    if "/" in name or name in {".", ".."}:
        raise ConfigurationError(f"{key} must be a plain file name inside the images directory (got '{name}')")
    return name


def _resolve_iso_url(settings: Mapping[str, str]) -> Tuple[Optional[str], Optional[str]]:
    """Return (url, key). ISO_URL wins over any distro specific *_ISO_URL."""
    direct = (settings.get("ISO_URL") or "").strip()
    if direct:
        return direct, "ISO_URL"
    for key in sorted(settings):
        if key.endswith(ISO_URL_SUFFIX) and key != "ISO_URL":
            value = (settings.get(key) or "").strip()
            if value:
                return value, key
    return None, None


def parse_env(environ: Optional[Mapping[str, str]] = None) -> LaunchConfig:
    settings = build_settings(environ)

    boot_mode = _parse_boot_mode(get_env("BOOT_MODE", "install", environ=settings) or "install")
    firmware = _parse_firmware(get_env("FIRMWARE", "legacy", environ=settings) or "legacy")

    memory_mb = parse_int_env("MEMORY", "2048", min_val=128, environ=settings)
    cores = parse_int_env("CORES", "2", min_val=1, environ=settings)
    disk_size = validate_disk_size((get_env("DISK_SIZE", "20G", environ=settings) or "20G").strip())
    disk_format = (get_env("DISK_FORMAT", "qcow2", environ=settings) or "qcow2").strip().lower()
    if disk_format not in DISK_FORMATS:
        supported = ", ".join(sorted(DISK_FORMATS))
        raise ConfigurationError(f"Unsupported DISK_FORMAT '{disk_format}'. Supported: {supported}")

    images_raw = (settings.get("IMAGES_DIR") or "").strip()
    images_dir = Path(images_raw) if images_raw else constants.IMAGES_DIR
    state_raw = (settings.get("STATE_DIR") or "").strip()
    state_dir = Path(state_raw) if state_raw else constants.STATE_DIR

    disk_name = _artifact_name("DISK_NAME", "disk.qcow2", settings)
    iso_name = _artifact_name("ISO_NAME", "install.iso", settings)
    iso_url, iso_url_key = _resolve_iso_url(settings)

    ssh_raw = get_env("HOST_SSH_PORT", "2222", environ=settings)
    host_ssh_port: Optional[int] = None
    if ssh_raw is not None and ssh_raw.strip():
        host_ssh_port = parse_int_env("HOST_SSH_PORT", "2222", min_val=1, max_val=65535, environ=settings)

    graphical = get_env_bool("GRAPHICAL", False, environ=settings)
    display_index = parse_int_env("VNC_DISPLAY", "1", min_val=0, max_val=99, environ=settings)
    novnc_port = parse_int_env("NOVNC_PORT", "6080", min_val=1, max_val=65535, environ=settings)
    heartbeat = parse_int_env("NOVNC_HEARTBEAT", "30", min_val=1, environ=settings)
    web_raw = (settings.get("NOVNC_WEB_DIR") or "").strip()
    web_dir = Path(web_raw) if web_raw else constants.NOVNC_WEB_DIR

    display = DisplaySpec(
        enabled=graphical,
        display_index=display_index,
        novnc_port=novnc_port,
        web_dir=web_dir,
        heartbeat=heartbeat,
    )

    if graphical:
        active_ports = {"NOVNC_PORT": novnc_port, f"VNC_DISPLAY({display_index})": display.vnc_port}
        if host_ssh_port is not None:
            active_ports["HOST_SSH_PORT"] = host_ssh_port
        seen: Dict[int, str] = {}
        for label, port in active_ports.items():
            if port in seen:
                raise ConfigurationError(
                    f"Port conflict: {label}={port} collides with {seen[port]}={port}. "
                    "Each service needs a unique port."
                )
            seen[port] = label

    disk_path = images_dir / disk_name
    return LaunchConfig(
        boot_mode=boot_mode,
        firmware=firmware,
        resources=ResourceSpec(memory_mb=memory_mb, cores=cores),
        disk=DiskSpec(path=disk_path, size=disk_size, format=disk_format),
        media=MediaSpec(path=images_dir / iso_name, url=iso_url, url_key=iso_url_key),
        network=NetworkSpec(host_ssh_port=host_ssh_port),
        display=display,
        images_dir=images_dir,
        firmware_vars=state_dir / "firmware" / f"{disk_path.name}-vars.fd",
    )
