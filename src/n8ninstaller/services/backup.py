"""Backup, restore and backup scheduling for the n8n stack."""

import shlex
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional

from n8ninstaller.constants import (
    BACKUP_DATE_FORMAT,
    BACKUP_RETENTION_DAYS,
    BACKUP_SCHEDULE,
    DEFAULT_DB_NAME,
    DEFAULT_DB_USER,
    RESTORE_DB_SETTLE_SECONDS,
    SCRIPT_MODE,
    TUNNEL_SERVICE_NAME,
)
from n8ninstaller.errors import InstallerError
from n8ninstaller.errors_catalog import actionable_error
from n8ninstaller.models import InstallPaths

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class BackupSet:
    """The four files produced by one backup run."""

    database_dump: Path
    data_archive: Path
    tunnel_archive: Path
    full_archive: Path


class BackupService:
    """Creates and restores dated snapshots of the database, n8n data and tunnel config.

    Snapshots live in a single directory and are keyed by ``YYYY-MM-DD``.
    Files older than ``retention_days`` whole days are pruned after each
    backup; a file exactly ``retention_days`` old is kept.
    """

    SCRIPT_MARKER = "backup-n8n.sh"

    def __init__(
        self,
        logger,
        console,
        paths: InstallPaths,
        command_runner,
        archive_service,
        filesystem_service,
        compose_cmd_factory: Callable[[], List[str]],
        retention_days: int = BACKUP_RETENTION_DAYS,
        db_user: str = DEFAULT_DB_USER,
        db_name: str = DEFAULT_DB_NAME,
    ):
        self.logger = logger
        self.console = console
        self.paths = paths
        self.command_runner = command_runner
        self.archive = archive_service
        self.filesystem = filesystem_service
        self.compose_cmd_factory = compose_cmd_factory
        self.retention_days = retention_days
        self.db_user = db_user
        self.db_name = db_name

    @property
    def backup_dir(self) -> Path:
        return self.paths.resolved_backup_dir

    def backup_set(self, day: date) -> BackupSet:
        stamp = day.strftime(BACKUP_DATE_FORMAT)
        return BackupSet(
            database_dump=self.backup_dir / f"n8n_postgres_{stamp}.sql",
            data_archive=self.backup_dir / f"n8n_data_{stamp}.tar.gz",
            tunnel_archive=self.backup_dir / f"cloudflared_{stamp}.tar.gz",
            full_archive=self.backup_dir / f"n8n_full_{stamp}.tar.gz",
        )

    def _compose(self, *args: str) -> List[str]:
        return list(self.compose_cmd_factory()) + ["-f", str(self.paths.compose_file)] + list(args)

    def _etc_relative(self) -> str:
        return str(self.paths.cloudflared_etc_dir.relative_to(self.paths.root))

    def dump_database(self, destination: Path):
        result = self.command_runner.run(
            self._compose("exec", "-T", "postgres", "pg_dump", "-U", self.db_user, self.db_name),
            capture_output=True,
        )
        destination.write_text(result.stdout or "", encoding="utf-8")

    def archive_tunnel_config(self, destination: Path):
        if self.command_runner.use_sudo:
            self.command_runner.run(
                ["tar", "-czf", str(destination), "-C", str(self.paths.root), self._etc_relative()],
                privileged=True,
            )
            return
        self.archive.create_tar_gz(destination, self.paths.root, [self._etc_relative()])

    def run_backup(self, today: Optional[date] = None, now: Optional[float] = None) -> BackupSet:
        today = today or date.today()
        snapshot = self.backup_set(today)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

        self.logger.info("Creating backup %s in %s", today.strftime(BACKUP_DATE_FORMAT), self.backup_dir)
        self.dump_database(snapshot.database_dump)
        self.archive.create_tar_gz(
            snapshot.data_archive,
            self.paths.data_dir.parent,
            [self.paths.data_dir.name],
        )
        self.archive_tunnel_config(snapshot.tunnel_archive)
        self.archive.create_tar_gz(
            snapshot.full_archive,
            self.backup_dir,
            [
                snapshot.database_dump.name,
                snapshot.data_archive.name,
                snapshot.tunnel_archive.name,
            ],
        )

        removed = self.prune(now=now)
        self.console.print(
            f"[green][SUCCESS][/green] Backup written to {snapshot.full_archive} "
            f"({len(removed)} expired file(s) removed)."
        )
        return snapshot

    def prune(self, now: Optional[float] = None) -> List[Path]:
        now = time.time() if now is None else now
        removed: List[Path] = []
        if not self.backup_dir.is_dir():
            return removed

        for candidate in sorted(self.backup_dir.rglob("*")):
            if not candidate.is_file():
                continue
            age_days = int((now - candidate.stat().st_mtime) // SECONDS_PER_DAY)
            if age_days > self.retention_days:
                candidate.unlink()
                removed.append(candidate)
                self.logger.info("Removed expired backup %s (%s days old)", candidate, age_days)
        return removed

    def _require(self, path: Path):
        if not path.is_file():
            raise InstallerError(
                actionable_error("backup_missing", path=str(path), backup_dir=str(self.backup_dir))
            )

    def restore(self, day: date, settle_seconds: float = RESTORE_DB_SETTLE_SECONDS):
        """Replaces live data with the snapshot taken on ``day``. Destructive."""
        snapshot = self.backup_set(day)
        for path in (snapshot.database_dump, snapshot.data_archive, snapshot.tunnel_archive):
            self._require(path)

        self.archive.check_members(snapshot.data_archive, self.paths.data_dir.parent)
        self.archive.check_members(snapshot.tunnel_archive, self.paths.root)

        run = self.command_runner.run
        self.console.print(f"[blue][INFO][/blue] Restoring n8n from {day.strftime(BACKUP_DATE_FORMAT)}...")
        run(self._compose("down"))
        run(["systemctl", "stop", TUNNEL_SERVICE_NAME], check=False, privileged=True)
        run(self._compose("up", "-d", "postgres"))
        time.sleep(settle_seconds)

        dump = snapshot.database_dump.read_text(encoding="utf-8")
        run(
            self._compose("exec", "-T", "postgres", "psql", "-U", self.db_user, self.db_name),
            capture_output=True,
            input_text=dump,
        )
        run(self._compose("down"))

        self.archive.safe_extract_tar(snapshot.data_archive, self.paths.data_dir.parent)
        if self.command_runner.use_sudo:
            run(
                ["tar", "-xzf", str(snapshot.tunnel_archive), "-C", str(self.paths.root)],
                privileged=True,
            )
        else:
            self.archive.safe_extract_tar(snapshot.tunnel_archive, self.paths.root)

        run(["systemctl", "start", TUNNEL_SERVICE_NAME], check=False, privileged=True)
        run(self._compose("up", "-d"))
        self.console.print(f"[green][SUCCESS][/green] Restore from {day.strftime(BACKUP_DATE_FORMAT)} finished.")

    def build_backup_script(self, python_executable: str) -> str:
        command = [
            python_executable,
            "-m",
            "n8ninstaller",
            "backup",
            "--home-dir",
            str(self.paths.home),
            "--backup-dir",
            str(self.backup_dir),
            "--retention-days",
            str(self.retention_days),
        ]
        return f"""#!/bin/bash
# Daily n8n backup. Generated by n8n-pi-installer.
exec {shlex.join(command)} "$@"
"""

    def build_restore_script(self, python_executable: str) -> str:
        command = [
            python_executable,
            "-m",
            "n8ninstaller",
            "restore",
            "--home-dir",
            str(self.paths.home),
            "--backup-dir",
            str(self.backup_dir),
        ]
        return f"""#!/bin/bash
# Restores n8n from a dated backup. Overwrites live data.
[ -z "$1" ] && {{ echo "Usage: ./{self.paths.restore_script.name} YYYY-MM-DD"; exit 1; }}
exec {shlex.join(command)} "$1"
"""

    def write_scripts(self, python_executable: str):
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        self.filesystem.write_file(
            self.paths.backup_script, self.build_backup_script(python_executable), SCRIPT_MODE
        )
        self.filesystem.write_file(
            self.paths.restore_script, self.build_restore_script(python_executable), SCRIPT_MODE
        )

    def cron_line(self, schedule: str = BACKUP_SCHEDULE) -> str:
        return f"{schedule} {self.paths.backup_script} >> {self.paths.backup_log} 2>&1"

    def build_crontab(self, current: str, schedule: str = BACKUP_SCHEDULE) -> str:
        lines = [
            line
            for line in (current or "").splitlines()
            if line.strip() and self.SCRIPT_MARKER not in line
        ]
        lines.append(self.cron_line(schedule))
        return "\n".join(lines) + "\n"

    def schedule(self, schedule: str = BACKUP_SCHEDULE):
        current = self.command_runner.run(["crontab", "-l"], check=False, capture_output=True)
        existing = current.stdout if current.returncode == 0 else ""
        self.command_runner.run(
            ["crontab", "-"],
            capture_output=True,
            input_text=self.build_crontab(existing, schedule),
        )

    def configure(self, python_executable: str, schedule: str = BACKUP_SCHEDULE):
        self.console.print("[blue][INFO][/blue] Configuring automatic daily backups...")
        self.write_scripts(python_executable)
        self.schedule(schedule)
        self.console.print(f"[green][SUCCESS][/green] Daily backups scheduled ({schedule}).")
