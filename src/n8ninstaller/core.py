import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
import yaml
from rich.console import Console
from rich.panel import Panel

from .constants import (
    BACKUP_RETENTION_DAYS,
    BACKUP_SCHEDULE,
    DEFAULT_DB_PASSWORD,
    DEFAULT_TIMEZONE,
    DEFAULT_TUNNEL_NAME,
    DIR_MODE,
    SERVICE_SETTLE_SECONDS,
)
from .errors import InstallerError, RebootRequired
from .models import InstallPaths, InstallPhase, StackSettings, StepOutcome, StepResult, TunnelIdentity
from .services.archive import ArchiveService
from .services.backup import BackupService
from .services.command_runner import CommandRunner
from .services.docker_runtime import DockerRuntimeService
from .services.download import DownloadService
from .services.filesystem import FileSystemService
from .services.packages import PackageService
from .services.preflight import PreflightService
from .services.prompts import PromptService
from .services.service_unit import ServiceUnitService
from .services.state import StateService
from .services.tunnel import TunnelService
from .services.validation import ValidationService

console = Console()
logger = logging.getLogger("n8ninstaller")


def default_home() -> Path:
    """Home of the user who invoked the installer, even under sudo."""
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user and sudo_user != "root":
        return Path(os.path.expanduser(f"~{sudo_user}"))
    return Path.home()


class N8nInstaller:
    """Resumable installer workflow for n8n behind a Cloudflare Tunnel.

    Every invocation runs the preflight gate, then a suffix of
    ``STEP_SEQUENCE`` chosen by the persisted installation phase.
    """

    STEP_SEQUENCE = (
        "update_system",
        "install_docker",
        "install_docker_compose",
        "configure_n8n",
        "install_cloudflared",
        "configure_tunnel",
        "start_services",
        "configure_backups",
        "show_final_info",
    )
    RESUME_POINTS = {
        InstallPhase.FRESH: "update_system",
        InstallPhase.RESUME_AFTER_DOCKER_REBOOT: "install_docker_compose",
        InstallPhase.RESUME_AFTER_STACK_REBOOT: "start_services",
    }

    def __init__(
        self,
        home_dir: Optional[str] = None,
        root_dir: str = "/",
        state_file: Optional[str] = None,
        backup_dir: Optional[str] = None,
        domain: Optional[str] = None,
        db_password: Optional[str] = None,
        tunnel_name: Optional[str] = None,
        timezone: str = DEFAULT_TIMEZONE,
        assume_yes: bool = False,
        retention_days: int = BACKUP_RETENTION_DAYS,
        backup_schedule: str = BACKUP_SCHEDULE,
        python_executable: Optional[str] = None,
    ):
        self.paths = InstallPaths(
            home=Path(home_dir).expanduser() if home_dir else default_home(),
            root=Path(root_dir),
            backup_dir=Path(backup_dir).expanduser() if backup_dir else None,
            state_file=Path(state_file).expanduser() if state_file else None,
        )
        self.timezone = timezone
        self.retention_days = retention_days
        self.backup_schedule = backup_schedule
        self.python_executable = python_executable or sys.executable

        self.settings: Optional[StackSettings] = None
        self.results: Dict[str, StepResult] = {}
        self.state: Optional[Dict[str, Any]] = None
        self._compose_cmd: Optional[List[str]] = None

        self.prompts = PromptService(
            console,
            presets={"domain": domain, "db_password": db_password, "tunnel_name": tunnel_name},
            assume_yes=assume_yes,
        )
        self.command_runner = CommandRunner(logger=logger)
        self.validation_service = ValidationService()
        self.filesystem_service = FileSystemService(
            logger=logger,
            console=console,
            command_runner=self.command_runner,
        )
        self.archive_service = ArchiveService()
        self.state_service = StateService(
            state_file=self.paths.resolved_state_file,
            logger=logger,
            legacy_markers=(
                (self.paths.legacy_docker_marker, InstallPhase.RESUME_AFTER_DOCKER_REBOOT),
                (self.paths.legacy_stack_marker, InstallPhase.RESUME_AFTER_STACK_REBOOT),
            ),
        )
        self.preflight_service = PreflightService(logger=logger, device_model_file=self.paths.device_model_file)
        self.download_service = DownloadService(logger=logger, console=console, requests_module=requests)
        self.package_service = PackageService(
            logger=logger,
            console=console,
            command_runner=self.command_runner,
            download_service=self.download_service,
            filesystem_service=self.filesystem_service,
        )
        self.docker_runtime_service = DockerRuntimeService(
            logger=logger,
            console=console,
            subprocess_module=subprocess,
        )
        self.tunnel_service = TunnelService(
            logger=logger,
            console=console,
            paths=self.paths,
            run_cmd=self._run_cmd,
            validation_service=self.validation_service,
            filesystem_service=self.filesystem_service,
            prompts=self.prompts,
        )
        self.service_unit_service = ServiceUnitService(
            logger=logger,
            console=console,
            paths=self.paths,
            run_cmd=self._run_cmd,
            filesystem_service=self.filesystem_service,
        )
        self.backup_service = BackupService(
            logger=logger,
            console=console,
            paths=self.paths,
            command_runner=self.command_runner,
            archive_service=self.archive_service,
            filesystem_service=self.filesystem_service,
            compose_cmd_factory=self._get_docker_compose_cmd,
            retention_days=self.retention_days,
        )

    def _run_cmd(self, cmd: List[str], check: bool = True, capture_output: bool = False, **kwargs) -> subprocess.CompletedProcess:
        return self.command_runner.run(cmd, check=check, capture_output=capture_output, **kwargs)

    def _get_docker_compose_cmd(self) -> List[str]:
        if self._compose_cmd is None:
            self._compose_cmd = self.docker_runtime_service.get_docker_compose_cmd()
        return self._compose_cmd

    def steps_for(self, phase: InstallPhase) -> List[str]:
        start = self.STEP_SEQUENCE.index(self.RESUME_POINTS[phase])
        return list(self.STEP_SEQUENCE[start:])

    def _run_step(self, name: str, callback, *args, **kwargs):
        if self.state:
            self.state_service.mark_step_started(self.state, name)
        logger.debug("Step started: %s", name)

        try:
            result = callback(*args, **kwargs)
        except RebootRequired:
            if self.state:
                self.state_service.mark_step_completed(self.state, name, status="reboot_pending")
            raise
        except Exception as exc:
            if self.state:
                self.state_service.mark_step_failed(self.state, name, str(exc))
            raise

        status = "success"
        if isinstance(result, StepResult):
            self.results[name] = result
            status = result.outcome.value
        if self.state:
            self.state_service.mark_step_completed(self.state, name, status=status)
        return result

    def _offer_reboot(self) -> bool:
        if not self.prompts.confirm("Reboot now?"):
            console.print("[yellow][WARNING][/yellow] Remember to reboot before continuing.")
            return False
        self._run_cmd(["reboot"], check=False, privileged=True)
        return True

    def check_environment(self):
        self.preflight_service.run_checks()

    def update_system(self):
        self.package_service.update_system()

    def install_docker(self):
        if not self.package_service.install_docker():
            return
        raise RebootRequired(
            "System must reboot for changes to take effect.",
            phase=InstallPhase.RESUME_AFTER_DOCKER_REBOOT,
            exit_code=0,
        )

    def install_docker_compose(self):
        self.package_service.install_docker_compose()

    def configure_n8n(self) -> StackSettings:
        console.print("[blue][INFO][/blue] Configuring n8n...")
        domain = self.validation_service.validate_domain(
            self.prompts.ask("domain", "Enter your domain for n8n (e.g. mydomain-n8n.com)")
        )
        db_password = self.prompts.ask(
            "db_password",
            "PostgreSQL password",
            default=DEFAULT_DB_PASSWORD,
            password=True,
        ) or DEFAULT_DB_PASSWORD

        self.filesystem_service.ensure_dir(self.paths.stack_dir)
        self.filesystem_service.ensure_dir(self.paths.data_dir, mode=DIR_MODE)

        self.settings = StackSettings(domain=domain, db_password=db_password, timezone=self.timezone)
        self.docker_runtime_service.create_compose_file(
            self.settings,
            compose_file=self.paths.compose_file,
            data_dir=self.paths.data_dir,
            filesystem_service=self.filesystem_service,
        )
        return self.settings

    def install_cloudflared(self):
        self.package_service.install_cloudflared(self.paths.cloudflared_bin)

    def configure_tunnel(self) -> TunnelIdentity:
        if self.settings is None:
            raise InstallerError("n8n must be configured before the tunnel.")
        tunnel_name = self.prompts.ask("tunnel_name", "Enter a tunnel name", default=DEFAULT_TUNNEL_NAME)
        return self.tunnel_service.provision(tunnel_name or DEFAULT_TUNNEL_NAME, self.settings.domain)

    def register_tunnel_service(self) -> StepResult:
        result = self.service_unit_service.register()
        if result.outcome is StepOutcome.DEGRADED and self.prompts.confirm(
            "Run cloudflared in the background instead?", default=True
        ):
            try:
                self.service_unit_service.start_detached(
                    lambda cmd, log_path: self.command_runner.spawn_detached(
                        self.command_runner.privileged(cmd, non_interactive=True),
                        log_path,
                        settle_seconds=SERVICE_SETTLE_SECONDS,
                    )
                )
            except InstallerError as exc:
                console.print(f"[red][ERROR][/red] cloudflared could not be started in the background: {exc}")
                logger.warning(str(exc))
        return result

    def start_services(self) -> StepResult:
        console.print("[blue][INFO][/blue] Starting services...")
        self.results["tunnel_service"] = self.register_tunnel_service()

        engine = self.docker_runtime_service.ensure_engine(self._run_cmd)
        if engine.outcome is StepOutcome.FATAL:
            console.print(f"[red][ERROR][/red] {engine.message}")
            raise RebootRequired(engine.message, phase=InstallPhase.RESUME_AFTER_STACK_REBOOT, exit_code=1)

        stack = self.docker_runtime_service.start_stack(
            self._get_docker_compose_cmd(),
            self.paths.compose_file,
            self._run_cmd,
        )
        if stack.ok:
            console.print(f"[green][SUCCESS][/green] {stack.message}")
        else:
            console.print(f"[red][ERROR][/red] {stack.message}")
            logger.error(stack.message)
        return stack

    def configure_backups(self):
        self.backup_service.configure(self.python_executable, self.backup_schedule)

    def read_hostname(self) -> Optional[str]:
        config_file = self.paths.tunnel_config_file
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Could not read %s: %s", config_file, exc)
            return None
        for rule in data.get("ingress") or []:
            if isinstance(rule, dict) and rule.get("hostname"):
                return str(rule["hostname"])
        return None

    def show_final_info(self):
        hostname = self.read_hostname() or (self.settings.domain if self.settings else "<your-domain>")
        stack = self.results.get("start_services")
        headline = "n8n installation completed successfully!"
        if stack is not None and not stack.ok:
            headline = "n8n installation finished with errors (containers not running)."

        body = "\n".join(
            [
                "Your n8n server is available at:",
                f"[blue]https://{hostname}[/blue]",
                "",
                "On first run create an admin account.",
                "Configuration files:",
                f"  - {self.paths.compose_file}",
                f"  - {self.paths.tunnel_config_file}",
                f"  - {self.paths.backup_script} (daily, {self.backup_schedule})",
                f"  - {self.paths.restore_script} (usage: {self.paths.restore_script} YYYY-MM-DD)",
            ]
        )
        console.print(Panel(body, title=headline, border_style="green"))
        console.print(
            "[yellow]IMPORTANT: Reboot once to ensure all services start properly:[/yellow] sudo reboot"
        )

    def run(self) -> int:
        exit_code = 1

        try:
            logger.info("Starting n8n installer...")
            self.check_environment()

            console.print(Panel("Automatic n8n installer for Raspberry Pi", border_style="green"))
            if not self.prompts.confirm():
                logger.info("Installation declined by user.")
                return 0

            self.state, phase = self.state_service.begin()
            if phase is not InstallPhase.FRESH:
                logger.info("Resuming installation after reboot (%s).", phase.value)

            for step_name in self.steps_for(phase):
                self._run_step(step_name, getattr(self, step_name))

            self.state_service.mark_status(self.state, "success")
            exit_code = 0
            return exit_code

        except RebootRequired as exc:
            if self.state:
                self.state_service.set_phase(self.state, exc.phase)
                self.state_service.mark_status(self.state, "reboot_pending", str(exc))
            console.print(f"[yellow][WARNING][/yellow] {exc}")
            console.print("[blue][INFO][/blue] Run the installer again after reboot.")
            self._offer_reboot()
            exit_code = exc.exit_code
            return exit_code
        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            if self.state:
                self.state_service.mark_status(self.state, "aborted", "Operation cancelled by user.")
            return exit_code
        except InstallerError as exc:
            console.print(f"[bold red][ERROR][/bold red] {exc}")
            logger.error(str(exc))
            if self.state:
                self.state_service.mark_status(self.state, "failed", str(exc))
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            if self.state:
                self.state_service.mark_status(self.state, "failed", str(exc))
            return exit_code
