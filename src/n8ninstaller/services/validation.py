"""Input validation helpers for the n8n installer."""

import re
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from n8ninstaller.constants import BACKUP_DATE_FORMAT, UUID_PATTERN
from n8ninstaller.errors import InstallerError
from n8ninstaller.errors_catalog import actionable_error


class ValidationService:
    """Validates user-supplied values before they reach generated files."""

    UUID_RE = re.compile(UUID_PATTERN)
    UUID_FULL_RE = re.compile(rf"^{UUID_PATTERN}$")
    DOMAIN_RE = re.compile(
        r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z][a-z0-9-]{0,62}$"
    )

    def extract_uuid(self, text: str) -> Optional[str]:
        match = self.UUID_RE.search(text or "")
        return match.group(0) if match else None

    def is_tunnel_id(self, value: str) -> bool:
        return bool(self.UUID_FULL_RE.match(value or ""))

    def validate_tunnel_id(self, value: str) -> str:
        clean_value = (value or "").strip()
        if not self.is_tunnel_id(clean_value):
            raise InstallerError(actionable_error("invalid_tunnel_id", value=clean_value or "<empty>"))
        return clean_value

    def validate_domain(self, value: str) -> str:
        clean_value = (value or "").strip().lower()
        if clean_value.startswith(("http://", "https://")):
            raise InstallerError(
                f"Domain must be a bare hostname without scheme: {value}"
            )
        if not self.DOMAIN_RE.match(clean_value):
            raise InstallerError(f"Invalid domain name: {value!r}")
        return clean_value

    def validate_backup_date(self, value: str) -> date:
        try:
            return datetime.strptime((value or "").strip(), BACKUP_DATE_FORMAT).date()
        except ValueError as exc:
            raise InstallerError(
                f"Invalid backup date '{value}'. Expected format YYYY-MM-DD."
            ) from exc

    def validate_existing_file(self, value: str) -> Path:
        path = Path((value or "").strip()).expanduser()
        if not value or not path.is_file():
            raise InstallerError(actionable_error("credentials_not_found", path=str(value or "<empty>")))
        return path
