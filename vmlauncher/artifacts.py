"""Disk image, install media and firmware vars preparation for vm-launcher."""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

from vmlauncher.constants import DOWNLOAD_RETRIES, DOWNLOAD_RETRY_DELAY, QEMU_IMG_BINARY
from vmlauncher.exceptions import ArtifactIOError, ConfigurationError, DownloadError
from vmlauncher.models import BootMode, DiskSpec, MediaSpec
from vmlauncher.utils import (
    download_file_with_retry,
    ensure_directory,
    log,
    require_binary,
    run,
)


def ensure_images_dir(path: Path) -> None:
    """Create the shared images directory and open it up for the host user."""
    try:
        ensure_directory(path)
    except OSError as exc:
        raise ArtifactIOError(f"Cannot create images directory {path} (IMAGES_DIR): {exc}")
    try:
        path.chmod(0o777)
    except OSError as exc:
        log("DEBUG", f"Could not chmod {path}: {exc}")


def ensure_disk(disk: DiskSpec) -> bool:
    """Create a sparse disk image unless one is already present.

    Returns True when a new image was created. Existing files are never
    touched, so repeated runs keep the installed guest.
    """
    if disk.path.exists():
        log("INFO", f"Using existing disk {disk.path}")
        return False

    qemu_img = require_binary(
        QEMU_IMG_BINARY,
        f"Ensure the image includes qemu-img, or place an existing disk at {disk.path} (DISK_NAME).",
    )
    log("INFO", f"Creating {disk.format} disk {disk.path} ({disk.size}) ...")
    try:
        ensure_directory(disk.path.parent)
        run([qemu_img, "create", "-f", disk.format, str(disk.path), disk.size], capture_output=True)
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or exc.stdout or "").strip()
        raise ArtifactIOError(
            f"qemu-img failed to create {disk.path} (DISK_NAME/DISK_SIZE={disk.size}): {detail or exc}"
        )
    except OSError as exc:
        raise ArtifactIOError(f"Failed to create disk {disk.path} (DISK_NAME): {exc}")
    log("SUCCESS", f"Created disk {disk.path}")
    return True


def ensure_install_media(
    media: MediaSpec,
    boot_mode: BootMode,
    retries: int = DOWNLOAD_RETRIES,
    delay: float = DOWNLOAD_RETRY_DELAY,
) -> bool:
    """Make sure the installer ISO is available in install mode.

    Returns True when the media was downloaded during this call.
    """
    if boot_mode is not BootMode.INSTALL:
        return False
    if media.path.exists():
        log("INFO", f"Using install media {media.path}")
        return False
    if not media.url:
        raise ConfigurationError(
            f"BOOT_MODE=install but ISO not found at {media.path} and ISO_URL is not set.\n"
            f"  Set ISO_URL (or a distro specific *_ISO_URL such as OPENBSD_ISO_URL) "
            f"or place the ISO at {media.path} (ISO_NAME)."
        )

    log("INFO", f"ISO not found at {media.path}. Downloading from {media.url} ({media.url_key}) ...")
    try:
        ensure_directory(media.path.parent)
    except OSError as exc:
        raise ArtifactIOError(f"Cannot create directory for {media.path} (IMAGES_DIR): {exc}")
    try:
        download_file_with_retry(
            media.url,
            media.path,
            label="Downloading install media",
            retries=retries,
            delay=delay,
        )
    except DownloadError as exc:
        raise DownloadError(f"{exc}\n  Check {media.url_key or 'ISO_URL'} or place the ISO at {media.path}.")
    except ArtifactIOError as exc:
        raise ArtifactIOError(f"{exc}\n  Check that IMAGES_DIR ({media.path.parent}) is writable and has free space.")
    log("SUCCESS", f"Downloaded ISO to {media.path}")
    return True


def ensure_firmware_vars(code_path: Path, vars_path: Path) -> Path:
    """Prepare the writable UEFI vars file from the code file, reusing it once present."""
    if vars_path.exists():
        log("DEBUG", f"Reusing OVMF vars file {vars_path}")
        return vars_path
    log("INFO", f"Preparing writable OVMF vars file at {vars_path}")
    try:
        ensure_directory(vars_path.parent)
        shutil.copyfile(code_path, vars_path)
    except OSError as exc:
        raise ArtifactIOError(f"Failed to prepare OVMF vars file {vars_path} (STATE_DIR): {exc}")
    try:
        os.chmod(vars_path, 0o666)
    except OSError as exc:
        log("DEBUG", f"Could not chmod {vars_path}: {exc}")
    return vars_path
