"""OS package and tool installation steps."""

import getpass
import os
import platform
import tempfile
from pathlib import Path
from typing import Callable, Optional

from n8ninstaller.constants import CLOUDFLARED_RELEASE_URL, DOCKER_INSTALL_SCRIPT_URL, SCRIPT_MODE
from n8ninstaller.errors import InstallerError


class PackageService:
    """Installs system packages and tools, skipping anything already present."""

    CLOUDFLARED_ARCHES = {
        "aarch64": "arm64",
        "arm64": "arm64",
        "armv7l": "arm",
        "armv6l": "arm",
        "x86_64": "amd64",
        "amd64": "amd64",
    }
    APT_RETRIES = 2
    APT_RETRY_BACKOFF_SECONDS = 10.0

    def __init__(self, logger, console, command_runner, download_service, filesystem_service):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.download_service = download_service
        self.filesystem_service = filesystem_service

    def update_system(self):
        self.console.print("[blue][INFO][/blue] Updating system packages...")
        self.command_runner.run(
            ["apt", "update"],
            privileged=True,
            retry_count=self.APT_RETRIES,
            retry_backoff_seconds=self.APT_RETRY_BACKOFF_SECONDS,
        )
        self.command_runner.run(["apt", "upgrade", "-y"], privileged=True)
        self.console.print("[green][SUCCESS][/green] System updated.")

    def target_user(self) -> str:
        return os.environ.get("SUDO_USER") or getpass.getuser()

    def install_docker(self) -> bool:
        """Returns True when Docker was installed by this call."""
        self.console.print("[blue][INFO][/blue] Installing Docker...")
        if self.command_runner.command_exists("docker"):
            self.console.print("[green][SUCCESS][/green] Docker is already installed.")
            return False

        with tempfile.TemporaryDirectory(prefix="n8n-installer-") as temp_dir:
            script_path = self.download_service.download_file(
                DOCKER_INSTALL_SCRIPT_URL,
                Path(temp_dir) / "get-docker.sh",
                "Downloading Docker install script...",
            )
            self.command_runner.run(["sh", str(script_path)], privileged=True)

        self.command_runner.run(["usermod", "-aG", "docker", self.target_user()], privileged=True)
        self.console.print("[green][SUCCESS][/green] Docker installed. A reboot is required.")
        return True

    def install_docker_compose(self):
        self.console.print("[blue][INFO][/blue] Installing Docker Compose...")
        if self.command_runner.command_exists("docker-compose"):
            self.console.print("[green][SUCCESS][/green] Docker Compose is already installed.")
            return

        self.command_runner.run(["apt", "install", "-y", "docker-compose"], privileged=True)
        self.console.print("[green][SUCCESS][/green] Docker Compose installed.")

    def cloudflared_arch(self, machine: Optional[str] = None) -> str:
        machine = (machine or platform.machine()).lower()
        if machine not in self.CLOUDFLARED_ARCHES:
            raise InstallerError(f"Unsupported CPU architecture for cloudflared: {machine}")
        return self.CLOUDFLARED_ARCHES[machine]

    def cloudflared_version(self) -> str:
        result = self.command_runner.run(["cloudflared", "--version"], check=False, capture_output=True)
        return (result.stdout or result.stderr or "unknown").strip()

    def install_cloudflared(self, binary_path: Path, version_probe: Optional[Callable[[], str]] = None):
        self.console.print("[blue][INFO][/blue] Installing cloudflared...")
        version_probe = version_probe or self.cloudflared_version

        if self.command_runner.command_exists("cloudflared"):
            self.console.print(
                f"[green][SUCCESS][/green] cloudflared already installed. Version: {version_probe()}"
            )
            return

        url = CLOUDFLARED_RELEASE_URL.format(arch=self.cloudflared_arch())
        with tempfile.TemporaryDirectory(prefix="n8n-installer-") as temp_dir:
            downloaded = self.download_service.download_file(
                url,
                Path(temp_dir) / "cloudflared",
                "Downloading cloudflared...",
            )
            self.filesystem_service.install_file(downloaded, binary_path, SCRIPT_MODE)

        self.console.print(f"[green][SUCCESS][/green] cloudflared installed. Version: {version_probe()}")
