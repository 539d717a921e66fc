"""Filesystem helpers for the n8n installer."""

import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Optional

from rich.console import Console

from n8ninstaller.errors import InstallerError


class FileSystemService:
    """Encapsulates file and directory side effects.

    Files under system directories are installed through ``sudo install``
    when the current process cannot write there itself.
    """

    def __init__(self, logger: logging.Logger, console: Console, command_runner=None):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner

    def set_permissions(self, path, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def ensure_dir(self, path: Path, mode: Optional[int] = None):
        path = Path(path)
        if self._writable(path.parent) or path.exists():
            path.mkdir(parents=True, exist_ok=True)
            if mode is not None and os.access(path, os.W_OK):
                self.set_permissions(path, mode)
            return
        self._require_runner(path)
        self.command_runner.run(["mkdir", "-p", str(path)], privileged=True)

    def write_file(self, path: Path, content: str, mode: int):
        """Writes ``content`` to ``path`` with ``mode``, replacing any old file."""
        path = Path(path)
        self.ensure_dir(path.parent)

        if self._writable(path.parent):
            fd, temp_path = tempfile.mkstemp(prefix=f".{path.name}-", dir=str(path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
                    file_obj.write(content)
                self.set_permissions(temp_path, mode)
                os.replace(temp_path, path)
            finally:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
            self.logger.debug("Wrote %s", path)
            return

        fd, temp_path = tempfile.mkstemp(prefix=f"{path.name}-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
            self.install_file(Path(temp_path), path, mode)
        finally:
            if os.path.exists(temp_path):
                os.remove(temp_path)

    def install_file(self, source: Path, destination: Path, mode: int):
        """Copies ``source`` over ``destination``, removing a stale file first."""
        source = Path(source)
        destination = Path(destination)
        self.ensure_dir(destination.parent)

        if self._writable(destination.parent):
            if destination.exists() or destination.is_symlink():
                destination.unlink()
            shutil.copyfile(source, destination)
            self.set_permissions(destination, mode)
            self.logger.debug("Installed %s -> %s", source, destination)
            return

        self._require_runner(destination)
        self.command_runner.run(["rm", "-f", str(destination)], privileged=True)
        self.command_runner.run(
            ["install", "-m", format(mode, "o"), str(source), str(destination)],
            privileged=True,
        )

    def _writable(self, directory: Path) -> bool:
        while not directory.exists() and directory != directory.parent:
            directory = directory.parent
        return os.access(directory, os.W_OK)

    def _require_runner(self, path: Path):
        if self.command_runner is None:
            raise InstallerError(f"Permission denied writing {path} and no privileged runner available.")
