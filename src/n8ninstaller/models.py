"""Shared domain models for the n8n installer."""

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .constants import DEFAULT_DB_NAME, DEFAULT_DB_USER, DEFAULT_TIMEZONE, DEFAULT_TUNNEL_NAME


class InstallPhase(str, enum.Enum):
    """Entry state of an installer invocation."""

    FRESH = "fresh"
    RESUME_AFTER_DOCKER_REBOOT = "resume-after-docker-reboot"
    RESUME_AFTER_STACK_REBOOT = "resume-after-stack-reboot"


class StepOutcome(str, enum.Enum):
    SUCCESS = "success"
    RECOVERED = "recovered"
    DEGRADED = "degraded"
    FATAL = "fatal"


@dataclass(frozen=True)
class StepResult:
    """Outcome of a soft-fail step, surfaced to the workflow driver."""

    outcome: StepOutcome
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in (StepOutcome.SUCCESS, StepOutcome.RECOVERED)


@dataclass(frozen=True)
class InstallPaths:
    """Every filesystem location the installer reads or writes.

    ``root`` stands in for ``/`` so the whole layout can be relocated,
    which the tests rely on.
    """

    home: Path
    root: Path = Path("/")
    backup_dir: Optional[Path] = None
    state_file: Optional[Path] = None

    @property
    def stack_dir(self) -> Path:
        return self.home / "n8n"

    @property
    def compose_file(self) -> Path:
        return self.stack_dir / "docker-compose.yml"

    @property
    def data_dir(self) -> Path:
        return self.home / ".n8n"

    @property
    def user_cloudflared_dir(self) -> Path:
        return self.home / ".cloudflared"

    @property
    def cert_file(self) -> Path:
        return self.user_cloudflared_dir / "cert.pem"

    @property
    def credential_search_dirs(self) -> Tuple[Path, ...]:
        dirs = [self.root / "root" / ".cloudflared", self.user_cloudflared_dir]
        unique = []
        for directory in dirs:
            if directory not in unique:
                unique.append(directory)
        return tuple(unique)

    @property
    def cloudflared_etc_dir(self) -> Path:
        return self.root / "etc" / "cloudflared"

    @property
    def tunnel_config_file(self) -> Path:
        return self.cloudflared_etc_dir / "config.yml"

    @property
    def cloudflared_bin(self) -> Path:
        return self.root / "usr" / "local" / "bin" / "cloudflared"

    @property
    def unit_file(self) -> Path:
        return self.root / "etc" / "systemd" / "system" / "cloudflared.service"

    @property
    def device_model_file(self) -> Path:
        return self.root / "proc" / "device-tree" / "model"

    @property
    def installer_dir(self) -> Path:
        return self.home / ".n8n-installer"

    @property
    def resolved_state_file(self) -> Path:
        return self.state_file or self.installer_dir / "state.json"

    @property
    def pid_file(self) -> Path:
        return self.installer_dir / "cloudflared.pid"

    @property
    def legacy_docker_marker(self) -> Path:
        return self.home / ".docker_fresh_install"

    @property
    def legacy_stack_marker(self) -> Path:
        return self.home / ".n8n_install_progress"

    @property
    def resolved_backup_dir(self) -> Path:
        return self.backup_dir or self.home / "backups"

    @property
    def backup_script(self) -> Path:
        return self.home / "backup-n8n.sh"

    @property
    def restore_script(self) -> Path:
        return self.home / "restore-n8n.sh"

    @property
    def backup_log(self) -> Path:
        return self.home / "backup.log"


@dataclass(frozen=True)
class StackSettings:
    """User-supplied values interpolated into the stack descriptor."""

    domain: str
    db_password: str
    db_user: str = DEFAULT_DB_USER
    db_name: str = DEFAULT_DB_NAME
    timezone: str = DEFAULT_TIMEZONE


@dataclass(frozen=True)
class TunnelIdentity:
    tunnel_id: str
    name: str = DEFAULT_TUNNEL_NAME
    credentials_file: Optional[Path] = None
