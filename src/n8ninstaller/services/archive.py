"""Archive helpers for backups and restores."""

import os
import tarfile
from pathlib import Path
from typing import Iterable

from n8ninstaller.errors import InstallerError


class ArchiveService:
    """Encapsulates tar.gz creation and safe extraction logic."""

    def is_within_dir(self, base_dir: Path, candidate: Path) -> bool:
        try:
            return os.path.commonpath([str(base_dir), str(candidate)]) == str(base_dir)
        except ValueError:
            return False

    def create_tar_gz(self, archive_path: Path, base_dir: Path, members: Iterable[str]):
        """Archives ``members`` (paths relative to ``base_dir``) into ``archive_path``."""
        archive_path = Path(archive_path)
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(archive_path, "w:gz") as tar:
                for member in members:
                    source = Path(base_dir) / member
                    if not source.exists():
                        raise InstallerError(f"Cannot archive missing path: {source}")
                    tar.add(str(source), arcname=member)
        except (OSError, tarfile.TarError) as exc:
            raise InstallerError(f"Could not create archive {archive_path}: {exc}") from exc

    def check_members(self, archive_path: Path, destination_dir: Path):
        """Rejects archives whose entries would land outside ``destination_dir``."""
        base = Path(destination_dir).resolve()
        try:
            with tarfile.open(archive_path, "r:*") as tar:
                self._check_members(tar.getmembers(), base)
        except tarfile.ReadError as exc:
            raise InstallerError(f"Invalid tar archive: {archive_path}") from exc

    def safe_extract_tar(self, archive_path: Path, destination_dir: Path):
        base = Path(destination_dir).resolve()

        try:
            with tarfile.open(archive_path, "r:*") as tar:
                members = tar.getmembers()
                self._check_members(members, base)
                extract_options = {}
                # Extraction filters landed in 3.10.12 and 3.11.4.
                if hasattr(tarfile, "data_filter"):
                    extract_options["filter"] = "data"
                tar.extractall(str(base), members=members, **extract_options)
        except tarfile.ReadError as exc:
            raise InstallerError(f"Invalid tar archive: {archive_path}") from exc
        except (OSError, tarfile.TarError) as exc:
            raise InstallerError(f"Could not extract {archive_path}: {exc}") from exc

    def _check_members(self, members, base: Path):
        for member in members:
            target_path = (base / member.name).resolve()

            if not self.is_within_dir(base, target_path):
                raise InstallerError(
                    f"Unsafe archive entry detected: `{member.name}`. "
                    "Archive extraction aborted to prevent path traversal."
                )

            if member.issym() or member.islnk():
                # Hard link names are relative to the archive root.
                anchor = target_path.parent if member.issym() else base
                link_target = (anchor / member.linkname).resolve()
                if os.path.isabs(member.linkname) or not self.is_within_dir(base, link_target):
                    raise InstallerError(
                        f"Unsafe archive entry detected: `{member.name}` links outside the destination."
                    )

            if member.isdev():
                raise InstallerError(f"Unsafe archive entry detected: `{member.name}` is a device file.")
