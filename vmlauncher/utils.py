"""Utility functions for vm-launcher."""

from __future__ import annotations

import http.client
import os
import shutil
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import List, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from vmlauncher.constants import (
    _LOG_VERBOSE,
    DISK_SIZE_RE,
    DOWNLOAD_RETRIES,
    DOWNLOAD_RETRY_DELAY,
    TRUTHY,
)
from vmlauncher.exceptions import ArtifactIOError, ConfigurationError, DownloadError, MissingBinaryError


def log(level: str, message: str) -> None:
    """Lightweight structured logging; errors go to stderr, everything else to stdout."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    stream = sys.stderr if level == "ERROR" else sys.stdout
    print(f"{colour}[{level}]{reset} {message}", file=stream, flush=True)


def get_env(name: str, default: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    source = os.environ if environ is None else environ
    return source.get(name, default)


def get_env_bool(name: str, default: bool = False, environ: Optional[Mapping[str, str]] = None) -> bool:
    raw = get_env(name, environ=environ)
    if raw is None:
        return default
    return raw.strip().lower() in TRUTHY


def parse_int_env(
    name: str,
    default: str,
    min_val: int = 1,
    max_val: Optional[int] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> int:
    raw = get_env(name, default, environ=environ)
    assert raw is not None
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ConfigurationError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"{name} must be <= {max_val} (got {value})")
    return value


def validate_disk_size(raw: str) -> str:
    if not DISK_SIZE_RE.match(raw):
        raise ConfigurationError(
            f"Invalid DISK_SIZE '{raw}'. Use a number with optional suffix: K, M, G, T (e.g. '20G')"
        )
    return raw


def require_binary(name: str, hint: str) -> str:
    """Return the resolved path of ``name`` or fail with an actionable message."""
    resolved = shutil.which(name)
    if resolved is None:
        raise MissingBinaryError(f"{name} not found in the container. {hint}")
    return resolved


def download_file(url: str, destination: Path, label: str = "Downloading") -> None:
    """Download a file into ``destination`` via a temp file in the same directory."""
    log("INFO", f"{label}: {url}")
    req = Request(url, headers={"User-Agent": "vm-launcher/1.0"})
    try:
        response = urlopen(req, timeout=60)
    except HTTPError as exc:
        raise DownloadError(f"HTTP error downloading {url}: {exc.code} {exc.reason}")
    except URLError as exc:
        raise DownloadError(f"Failed to download {url}: {exc.reason}")

    total = response.headers.get("Content-Length")
    total_bytes = int(total) if total else None
    downloaded = 0
    start_time = time.time()

    try:
        tmp = tempfile.NamedTemporaryFile(
            delete=False, dir=destination.parent, prefix=f".{destination.name}.", suffix=".part"
        )
    except OSError as exc:
        response.close()
        raise ArtifactIOError(f"Cannot write to {destination.parent}: {exc}")

    with response, tmp:
        tmp_path = Path(tmp.name)
        try:
            chunk_size = 1024 * 256  # 256 KiB
            while True:
                chunk = response.read(chunk_size)
                if not chunk:
                    break
                try:
                    tmp.write(chunk)
                except OSError as exc:
                    raise ArtifactIOError(f"Cannot write {tmp_path} in {destination.parent}: {exc}")
                downloaded += len(chunk)

                elapsed = time.time() - start_time
                speed = downloaded / elapsed if elapsed > 0 else 0
                downloaded_mb = downloaded / (1024 * 1024)
                if total_bytes:
                    total_mb = total_bytes / (1024 * 1024)
                    pct = downloaded * 100 / total_bytes
                    bar_len = 30
                    filled = int(bar_len * downloaded / total_bytes)
                    bar = "#" * filled + "-" * (bar_len - filled)
                    print(
                        f"\r  [{bar}] {pct:5.1f}% {downloaded_mb:.1f}/{total_mb:.1f} MiB "
                        f"({speed / (1024 * 1024):.1f} MiB/s)",
                        end="", flush=True,
                    )
                else:
                    print(
                        f"\r  {downloaded_mb:.1f} MiB downloaded ({speed / (1024 * 1024):.1f} MiB/s)",
                        end="", flush=True,
                    )
            print(flush=True)  # newline after progress
            if total_bytes is not None and downloaded < total_bytes:
                raise DownloadError(f"Download of {url} truncated ({downloaded} of {total_bytes} bytes)")
            try:
                tmp.flush()
                os.fsync(tmp.fileno())
            except OSError as exc:
                raise ArtifactIOError(f"Cannot write {tmp_path} in {destination.parent}: {exc}")
        except Exception:
            tmp.close()
            tmp_path.unlink(missing_ok=True)
            raise

    try:
        tmp_path.replace(destination)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise ArtifactIOError(f"Cannot move download into place at {destination}: {exc}")
    elapsed = time.time() - start_time
    log("SUCCESS", f"Downloaded {downloaded / (1024 * 1024):.1f} MiB in {elapsed:.1f}s")


def download_file_with_retry(
    url: str,
    destination: Path,
    label: str = "Downloading",
    retries: int = DOWNLOAD_RETRIES,
    delay: float = DOWNLOAD_RETRY_DELAY,
) -> None:
    """Retry ``download_file`` a fixed number of times with a fixed delay.

    Only fetch failures are retried. Local write failures surface at once as
    ``ArtifactIOError``.
    """
    attempts = max(1, retries)
    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            download_file(url, destination, label=label)
            return
        except (DownloadError, OSError, http.client.HTTPException) as exc:
            last_error = exc
            if attempt < attempts:
                log("WARN", f"Download attempt {attempt}/{attempts} failed: {exc}; retrying in {delay:.0f}s")
                time.sleep(delay)
    raise DownloadError(f"Failed to download {url} after {attempts} attempts: {last_error}")


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
