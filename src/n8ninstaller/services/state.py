"""Installation state persistence for reboot/resume support."""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from n8ninstaller.errors import InstallerError
from n8ninstaller.models import InstallPhase


class StateService:
    """Persists the installation phase in a single state file.

    The two marker files written by older shell installers are still
    honoured. They are checked before the state file, in priority order,
    and removed once consumed.
    """

    SCHEMA_VERSION = 1

    def __init__(self, state_file: Path, logger, legacy_markers: Tuple[Tuple[Path, InstallPhase], ...] = ()):
        self.state_file = Path(state_file)
        self.logger = logger
        self.legacy_markers = legacy_markers

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.state_file.exists():
            return None

        try:
            with open(self.state_file, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise InstallerError(f"Could not read state file '{self.state_file}': {exc}") from exc

        if not isinstance(data, dict):
            raise InstallerError(f"State file '{self.state_file}' has invalid format.")

        return data

    def save(self, state: Dict[str, Any]):
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        state["schema_version"] = self.SCHEMA_VERSION
        state["updated_at"] = self._now()

        # Same directory as the target so os.replace stays atomic.
        fd, temp_path = tempfile.mkstemp(
            prefix="state-", suffix=".json", dir=str(self.state_file.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(state, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.state_file)
        except OSError as exc:
            raise InstallerError(f"Could not write state file '{self.state_file}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    def new_state(self) -> Dict[str, Any]:
        return {
            "schema_version": self.SCHEMA_VERSION,
            "created_at": self._now(),
            "updated_at": self._now(),
            "phase": InstallPhase.FRESH.value,
            "status": "running",
            "current_step": None,
            "completed_steps": [],
            "steps": [],
            "last_error": None,
        }

    def current_phase(self) -> InstallPhase:
        """Returns the persisted phase without consuming it."""
        for marker, phase in self.legacy_markers:
            if marker.exists():
                return phase

        state = self.load()
        if not state:
            return InstallPhase.FRESH
        return self._parse_phase(state.get("phase"))

    def begin(self) -> Tuple[Dict[str, Any], InstallPhase]:
        """Consumes any pending resume phase and starts a new run record.

        The returned phase decides which suffix of the step sequence runs.
        The persisted phase is reset to ``fresh`` before any step executes.
        """
        entry_phase = InstallPhase.FRESH

        for marker, phase in self.legacy_markers:
            if marker.exists():
                entry_phase = phase
                marker.unlink()
                self.logger.info("Consumed legacy marker %s (%s).", marker, phase.value)
                break
        else:
            existing = self.load()
            if existing:
                entry_phase = self._parse_phase(existing.get("phase"))

        state = self.new_state()
        state["entry_phase"] = entry_phase.value
        self.save(state)
        return state, entry_phase

    def set_phase(self, state: Dict[str, Any], phase: InstallPhase):
        state["phase"] = phase.value
        self.save(state)

    def mark_step_started(self, state: Dict[str, Any], step_name: str):
        state["current_step"] = step_name
        state["steps"].append(
            {
                "name": step_name,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "error": None,
            }
        )
        self.save(state)

    def mark_step_completed(self, state: Dict[str, Any], step_name: str, status: str = "success"):
        self._update_step_status(state, step_name, status)
        if step_name not in state["completed_steps"]:
            state["completed_steps"].append(step_name)
        state["current_step"] = None
        self.save(state)

    def mark_step_failed(self, state: Dict[str, Any], step_name: str, error: str):
        self._update_step_status(state, step_name, "failed", error=error)
        state["status"] = "failed"
        state["last_error"] = error
        self.save(state)

    def mark_status(self, state: Dict[str, Any], status: str, error: Optional[str] = None):
        state["status"] = status
        if error:
            state["last_error"] = error
        self.save(state)

    def _parse_phase(self, value: Any) -> InstallPhase:
        try:
            return InstallPhase(value)
        except ValueError as exc:
            raise InstallerError(
                f"State file '{self.state_file}' has unknown phase '{value}'. Remove it to start fresh."
            ) from exc

    def _update_step_status(
        self,
        state: Dict[str, Any],
        step_name: str,
        status: str,
        error: Optional[str] = None,
    ):
        for step in reversed(state.get("steps", [])):
            if step.get("name") == step_name and step.get("status") == "running":
                step["status"] = status
                step["finished_at"] = self._now()
                step["error"] = error
                return

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
