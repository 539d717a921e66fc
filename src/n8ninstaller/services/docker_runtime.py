"""Docker runtime services for the n8n stack."""

import subprocess
import time
from pathlib import Path
from typing import Callable, List

from n8ninstaller.constants import (
    DOCKER_PROBE_TIMEOUT_SECONDS,
    DOCKER_RESTART_SETTLE_SECONDS,
    FILE_MODE,
    N8N_CONTAINER_PORT,
    N8N_HOST_PORT,
    N8N_IMAGE,
    POSTGRES_IMAGE,
)
from n8ninstaller.errors import InstallerError
from n8ninstaller.errors_catalog import actionable_error
from n8ninstaller.models import StackSettings, StepOutcome, StepResult


class DockerRuntimeService:
    """Manages docker-compose detection, the stack descriptor and stack lifecycle."""

    RUNNING_TOKEN = "Up"

    def __init__(self, logger, console, subprocess_module=subprocess):
        self.logger = logger
        self.console = console
        self.subprocess = subprocess_module

    def get_docker_compose_cmd(self) -> List[str]:
        try:
            self.subprocess.run(["docker-compose", "--version"], check=True, capture_output=True)
            return ["docker-compose"]
        except (self.subprocess.CalledProcessError, FileNotFoundError):
            try:
                self.subprocess.run(["docker", "compose", "version"], check=True, capture_output=True)
                return ["docker", "compose"]
            except (self.subprocess.CalledProcessError, FileNotFoundError):
                raise InstallerError(
                    "Docker Compose is not available. Install `docker-compose` "
                    "or the Compose v2 plugin (`docker compose`) and try again."
                )

    def build_compose_content(self, settings: StackSettings, data_dir: Path) -> str:
        return f"""
services:
  postgres:
    image: {POSTGRES_IMAGE}
    restart: always
    environment:
      - POSTGRES_USER={settings.db_user}
      - POSTGRES_PASSWORD={settings.db_password}
      - POSTGRES_DB={settings.db_name}
      - TZ={settings.timezone}
    volumes:
      - postgres_data:/var/lib/postgresql/data

  n8n:
    image: {N8N_IMAGE}
    user: "root"
    restart: always
    ports:
      - '{N8N_HOST_PORT}:{N8N_CONTAINER_PORT}'
    environment:
      - N8N_HOST=localhost
      - N8N_PORT={N8N_CONTAINER_PORT}
      - N8N_PROTOCOL=http
      - NODE_ENV=production
      - N8N_COMMUNITY_PACKAGES_ALLOW_TOOL_USAGE=true
      - TZ={settings.timezone}
      - WEBHOOK_URL=https://{settings.domain}
      - DB_TYPE=postgresdb
      - DB_POSTGRESDB_HOST=postgres
      - DB_POSTGRESDB_PORT=5432
      - DB_POSTGRESDB_DATABASE={settings.db_name}
      - DB_POSTGRESDB_USER={settings.db_user}
      - DB_POSTGRESDB_PASSWORD={settings.db_password}
    volumes:
      - {data_dir}:/home/node/.n8n
    depends_on:
      - postgres

volumes:
  postgres_data:
"""

    def create_compose_file(self, settings: StackSettings, compose_file: Path, data_dir: Path, filesystem_service):
        content = self.build_compose_content(settings, data_dir).strip() + "\n"
        filesystem_service.write_file(compose_file, content, FILE_MODE)
        self.console.print(f"[green][SUCCESS][/green] n8n configuration created at {compose_file}")

    def compose(self, compose_cmd: List[str], compose_file: Path, *args: str) -> List[str]:
        return list(compose_cmd) + ["-f", str(compose_file)] + list(args)

    def is_engine_running(self, run_cmd: Callable) -> bool:
        # A wedged daemon makes `docker info` hang instead of failing.
        try:
            result = run_cmd(
                ["docker", "info"],
                check=False,
                capture_output=True,
                timeout=DOCKER_PROBE_TIMEOUT_SECONDS,
            )
        except InstallerError as exc:
            self.logger.warning("Docker probe failed: %s", exc)
            return False
        return result.returncode == 0

    def ensure_engine(self, run_cmd: Callable, settle_seconds: float = DOCKER_RESTART_SETTLE_SECONDS) -> StepResult:
        if self.is_engine_running(run_cmd):
            return StepResult(StepOutcome.SUCCESS)

        self.console.print("[red][ERROR][/red] Docker is not running. Attempting restart...")
        self.logger.warning("Docker daemon not responding; restarting docker.service")
        run_cmd(["systemctl", "restart", "docker"], check=False, capture_output=True, privileged=True)
        time.sleep(settle_seconds)

        if self.is_engine_running(run_cmd):
            return StepResult(StepOutcome.RECOVERED, "Docker restarted.")
        return StepResult(StepOutcome.FATAL, actionable_error("docker_unavailable"))

    def is_stack_up(self, compose_cmd: List[str], compose_file: Path, run_cmd: Callable) -> bool:
        result = run_cmd(self.compose(compose_cmd, compose_file, "ps"), check=False, capture_output=True)
        return result.returncode == 0 and self.RUNNING_TOKEN in (result.stdout or "")

    def start_stack(self, compose_cmd: List[str], compose_file: Path, run_cmd: Callable) -> StepResult:
        run_cmd(self.compose(compose_cmd, compose_file, "down"), check=False, capture_output=True)
        run_cmd(self.compose(compose_cmd, compose_file, "up", "-d"), check=False, capture_output=True)

        if self.is_stack_up(compose_cmd, compose_file, run_cmd):
            return StepResult(StepOutcome.SUCCESS, "n8n containers started.")

        self.logger.warning("Stack did not come up; pruning unused networks and retrying once.")
        run_cmd(["docker", "network", "prune", "-f"], check=False, capture_output=True)
        run_cmd(self.compose(compose_cmd, compose_file, "up", "-d"), check=False, capture_output=True)

        if self.is_stack_up(compose_cmd, compose_file, run_cmd):
            return StepResult(StepOutcome.RECOVERED, "n8n containers started after network cleanup.")

        return StepResult(
            StepOutcome.FATAL,
            actionable_error("stack_start_failed", stack_dir=str(compose_file.parent)),
        )
