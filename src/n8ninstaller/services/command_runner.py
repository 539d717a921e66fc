"""Subprocess execution service for the n8n installer."""

import os
import shutil
import subprocess
import time
from typing import List, Optional

from n8ninstaller.errors import InstallerError


class CommandRunner:
    """Runs external commands with consistent error handling."""

    def __init__(self, logger, use_sudo: Optional[bool] = None):
        self.logger = logger
        if use_sudo is None:
            use_sudo = hasattr(os, "geteuid") and os.geteuid() != 0
        self.use_sudo = use_sudo

    def which(self, command: str) -> Optional[str]:
        return shutil.which(command)

    def command_exists(self, command: str) -> bool:
        return self.which(command) is not None

    def privileged(self, cmd: List[str], non_interactive: bool = False) -> List[str]:
        if self.use_sudo:
            # -n fails instead of waiting on a password nobody can type.
            return ["sudo", "-n"] + cmd if non_interactive else ["sudo"] + cmd
        return list(cmd)

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        retry_count: int = 0,
        retry_backoff_seconds: float = 0.0,
        privileged: bool = False,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        if privileged:
            cmd = self.privileged(cmd)
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        max_attempts = max(1, retry_count + 1)

        for attempt in range(1, max_attempts + 1):
            try:
                result = subprocess.run(
                    cmd,
                    text=True,
                    capture_output=capture_output,
                    timeout=timeout,
                    input=input_text,
                )
            except FileNotFoundError as exc:
                raise InstallerError(
                    f"Required command not found: {cmd[0]}. Please install it and try again."
                ) from exc
            except subprocess.TimeoutExpired as exc:
                if attempt < max_attempts:
                    self.logger.warning(
                        "Command timed out on attempt %s/%s. Retrying in %.1fs: %s",
                        attempt,
                        max_attempts,
                        retry_backoff_seconds,
                        cmd_str,
                    )
                    time.sleep(retry_backoff_seconds)
                    continue
                raise InstallerError(
                    f"Command timed out after {timeout}s: {cmd_str}"
                ) from exc
            except OSError as exc:
                raise InstallerError(f"Failed to execute command: {cmd_str}. {exc}") from exc

            if capture_output and result.stdout:
                self.logger.debug("Command output: %s", result.stdout.strip())

            if result.returncode == 0:
                return result

            stderr = (result.stderr or "").strip() if capture_output else ""
            message = f"Command failed ({result.returncode}): {cmd_str}"
            if stderr:
                message = f"{message}\n{stderr}"

            if attempt < max_attempts:
                self.logger.warning(
                    "Command failed on attempt %s/%s and will be retried in %.1fs.\n%s",
                    attempt,
                    max_attempts,
                    retry_backoff_seconds,
                    message,
                )
                time.sleep(retry_backoff_seconds)
                continue

            if check:
                raise InstallerError(message)

            self.logger.debug(message)
            return result

        raise InstallerError(f"Command failed after retries: {cmd_str}")

    def spawn_detached(self, cmd: List[str], log_path: str, settle_seconds: float = 0.0) -> int:
        """Start a long-lived background process and return its pid.

        The process must still be running after ``settle_seconds``.
        """
        cmd_str = " ".join(cmd)
        self.logger.debug("Spawning detached: %s", cmd_str)
        try:
            with open(log_path, "ab") as log_file:
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as exc:
            raise InstallerError(f"Failed to start background process: {cmd_str}. {exc}") from exc

        time.sleep(settle_seconds)
        returncode = process.poll()
        if returncode is not None:
            raise InstallerError(
                f"Background process exited with code {returncode}: {cmd_str}. See {log_path}."
            )
        return process.pid
