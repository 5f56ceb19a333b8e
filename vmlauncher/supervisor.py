"""Process supervision (websockify proxy + QEMU) for vm-launcher."""

from __future__ import annotations

import shutil
import signal
import subprocess
from typing import Dict, List, Optional

from vmlauncher.constants import LOOPBACK_ADDRESS, PROXY_BINARY, PUBLIC_ADDRESS, QEMU_BINARY
from vmlauncher.exceptions import MissingBinaryError
from vmlauncher.models import CommandSpec, DisplaySpec, ManagedProcess, ProcessRole
from vmlauncher.utils import log

FORWARDED_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP, signal.SIGQUIT)


def exit_code_for(returncode: int) -> int:
    """Map a Popen return code to a shell style exit status."""
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


class ProcessSupervisor:
    """Start the optional display proxy, then run QEMU in the foreground."""

    def __init__(self, display: DisplaySpec, stop_timeout: float = 5.0) -> None:
        self.display = display
        self.stop_timeout = stop_timeout
        self.processes: List[ManagedProcess] = []
        self.primary: Optional[ManagedProcess] = None
        self.pending_signal: Optional[int] = None
        self._shutdown = False

    def proxy_command(self) -> List[str]:
        return [
            PROXY_BINARY,
            "--web",
            str(self.display.web_dir),
            f"{PUBLIC_ADDRESS}:{self.display.novnc_port}",
            f"{LOOPBACK_ADDRESS}:{self.display.vnc_port}",
            f"--heartbeat={self.display.heartbeat}",
        ]

    def start_proxy(self) -> Optional[ManagedProcess]:
        if not self.display.enabled:
            return None
        if not self.display.web_dir.is_dir():
            log(
                "WARN",
                f"noVNC web directory {self.display.web_dir} not found (NOVNC_WEB_DIR). noVNC will not be available.",
            )
            return None
        if shutil.which(PROXY_BINARY) is None:
            log("WARN", f"{PROXY_BINARY} not found. noVNC will not be available.")
            return None

        cmd = self.proxy_command()
        log(
            "INFO",
            f"Starting websockify serving {self.display.web_dir} on port {self.display.novnc_port}, "
            f"proxying to {LOOPBACK_ADDRESS}:{self.display.vnc_port}",
        )
        try:
            proc = subprocess.Popen(cmd)
        except OSError as exc:
            log("WARN", f"Failed to start noVNC proxy: {exc}")
            return None
        managed = ManagedProcess(role=ProcessRole.AUXILIARY, argv=cmd, process=proc)
        self.processes.append(managed)
        log("INFO", f"websockify pid={proc.pid}")
        return managed

    def start_primary(self, command: CommandSpec) -> ManagedProcess:
        try:
            proc = subprocess.Popen(command.argv)
        except FileNotFoundError as exc:
            raise MissingBinaryError(f"{command.binary} not found in the container: {exc}") from exc
        managed = ManagedProcess(role=ProcessRole.PRIMARY, argv=command.argv, process=proc)
        self.processes.append(managed)
        self.primary = managed
        return managed

    def _forward_signal(self, signum, frame) -> None:
        if self.primary is None:
            # Not spawned yet; run() delivers it once the hypervisor is up or skips the spawn.
            log("INFO", f"{signal.Signals(signum).name} received before {QEMU_BINARY} started")
            self.pending_signal = signum
            return
        if self.primary.process.poll() is not None:
            return
        log("INFO", f"{signal.Signals(signum).name} received, forwarding to {self.primary.name}")
        self.primary.process.send_signal(signum)

    def _install_handlers(self) -> Dict[int, object]:
        previous = {}
        for signum in FORWARDED_SIGNALS:
            previous[signum] = signal.signal(signum, self._forward_signal)
        return previous

    @staticmethod
    def _restore_handlers(previous: Dict[int, object]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def run(self, command: CommandSpec) -> int:
        """Block until QEMU exits and return its exit status."""
        previous = self._install_handlers()
        try:
            # Proxy first so an early browser client does not hit a closed port.
            self.start_proxy()
            if self.pending_signal is not None:
                log("INFO", f"Not starting {command.binary}: shutdown requested")
                return exit_code_for(-self.pending_signal)
            primary = self.start_primary(command)
            if self.pending_signal is not None and primary.process.poll() is None:
                primary.process.send_signal(self.pending_signal)
            returncode = primary.process.wait()
            if returncode < 0:
                log("INFO", f"{primary.name} terminated by signal {-returncode}")
            elif returncode != 0:
                log("WARN", f"{primary.name} exited with status {returncode}")
            else:
                log("INFO", f"{primary.name} exited cleanly")
            return exit_code_for(returncode)
        finally:
            self._restore_handlers(previous)
            self.stop()

    def stop(self) -> None:
        """Terminate whatever is still running; normally only the proxy is left."""
        if self._shutdown:
            return
        self._shutdown = True
        for managed in self.processes:
            if managed.process.poll() is None:
                managed.process.terminate()
        for managed in self.processes:
            try:
                managed.process.wait(timeout=self.stop_timeout)
            except subprocess.TimeoutExpired:
                managed.process.kill()
                managed.process.wait()
