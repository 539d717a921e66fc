"""systemd registration for the tunnel client."""

import time
from pathlib import Path
from typing import Callable

from n8ninstaller.constants import (
    FILE_MODE,
    SERVICE_SETTLE_SECONDS,
    TUNNEL_SERVICE_NAME,
    TUNNEL_SERVICE_RESTART_SEC,
)
from n8ninstaller.errors import InstallerError
from n8ninstaller.errors_catalog import actionable_error
from n8ninstaller.models import InstallPaths, StepOutcome, StepResult


class ServiceUnitService:
    """Installs and starts ``cloudflared.service``; falls back to a detached process."""

    def __init__(self, logger, console, paths: InstallPaths, run_cmd: Callable, filesystem_service):
        self.logger = logger
        self.console = console
        self.paths = paths
        self.run_cmd = run_cmd
        self.filesystem = filesystem_service

    def tunnel_command(self):
        return [
            str(self.paths.cloudflared_bin),
            "--config",
            str(self.paths.tunnel_config_file),
            "tunnel",
            "run",
        ]

    def build_unit(self) -> str:
        exec_start = " ".join(self.tunnel_command())
        return f"""[Unit]
Description=Cloudflare Tunnel
After=network.target

[Service]
TimeoutStartSec=0
Type=simple
User=root
ExecStart={exec_start}
Restart=on-failure
RestartSec={TUNNEL_SERVICE_RESTART_SEC}s

[Install]
WantedBy=multi-user.target
"""

    def is_active(self) -> bool:
        result = self.run_cmd(
            ["systemctl", "is-active", TUNNEL_SERVICE_NAME],
            check=False,
            capture_output=True,
            privileged=True,
        )
        return result.returncode == 0

    def register(self, settle_seconds: float = SERVICE_SETTLE_SECONDS) -> StepResult:
        self.console.print("[blue][INFO][/blue] Setting up cloudflared as systemd service...")
        if not self.paths.tunnel_config_file.is_file():
            raise InstallerError(
                actionable_error("tunnel_config_missing", path=str(self.paths.tunnel_config_file))
            )

        self.filesystem.write_file(self.paths.unit_file, self.build_unit(), FILE_MODE)
        self.run_cmd(["systemctl", "daemon-reload"], privileged=True)
        self.run_cmd(
            ["systemctl", "enable", "--now", TUNNEL_SERVICE_NAME],
            check=False,
            capture_output=True,
            privileged=True,
        )
        time.sleep(settle_seconds)

        if self.is_active():
            self.console.print("[green][SUCCESS][/green] cloudflared service started.")
            return StepResult(StepOutcome.SUCCESS, "cloudflared service started.")

        message = actionable_error("tunnel_service_inactive")
        self.console.print(f"[red][ERROR][/red] {message}")
        self.logger.warning(message)
        return StepResult(StepOutcome.DEGRADED, message)

    def start_detached(self, spawn: Callable) -> int:
        """Runs the tunnel client in the background and records its pid."""
        pid_file: Path = self.paths.pid_file
        pid_file.parent.mkdir(parents=True, exist_ok=True)
        log_path = pid_file.with_suffix(".log")
        pid = spawn(self.tunnel_command(), str(log_path))
        pid_file.write_text(f"{pid}\n", encoding="utf-8")
        self.console.print(
            f"[yellow][WARNING][/yellow] cloudflared running in background (pid {pid}, log {log_path})."
        )
        return pid
