"""Hardware and privilege checks that gate the installer."""

import grp
import os
from pathlib import Path
from typing import List, Optional

from n8ninstaller.errors import InstallerError
from n8ninstaller.errors_catalog import actionable_error


class PreflightService:
    PRIVILEGED_GROUPS = ("sudo", "root")
    MODEL_MARKER = "Raspberry Pi"

    def __init__(self, logger, device_model_file: Path):
        self.logger = logger
        self.device_model_file = Path(device_model_file)

    def read_device_model(self) -> Optional[str]:
        if not self.device_model_file.is_file():
            return None
        try:
            # The device tree string is NUL terminated.
            return self.device_model_file.read_bytes().decode("utf-8", errors="ignore").strip("\x00\n ")
        except OSError as exc:
            self.logger.warning("Could not read %s: %s", self.device_model_file, exc)
            return None

    def check_raspberry_pi(self):
        model = self.read_device_model()
        if not model or self.MODEL_MARKER not in model:
            raise InstallerError(actionable_error("not_raspberry_pi", model_path=str(self.device_model_file)))
        self.logger.info("Detected board: %s", model)

    def current_groups(self) -> List[str]:
        names = []
        for gid in os.getgroups():
            try:
                names.append(grp.getgrgid(gid).gr_name)
            except KeyError:
                continue
        return names

    def check_privileges(self):
        if os.geteuid() == 0:
            return
        groups = self.current_groups()
        if not any(group in self.PRIVILEGED_GROUPS for group in groups):
            raise InstallerError(actionable_error("insufficient_privileges"))

    def run_checks(self):
        self.check_raspberry_pi()
        self.check_privileges()
