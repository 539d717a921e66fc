"""Cloudflare Tunnel provisioning."""

import json
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from rich.markup import escape

from n8ninstaller.constants import FILE_MODE, N8N_HOST_PORT, SECRET_MODE
from n8ninstaller.errors import InstallerError
from n8ninstaller.errors_catalog import actionable_error
from n8ninstaller.models import InstallPaths, TunnelIdentity


class TunnelService:
    """Drives the ``cloudflared`` CLI to create, configure and route a tunnel.

    Tunnel lookups prefer ``cloudflared tunnel list --output json``. The
    tabular text output is only scraped when JSON is unavailable, and any
    identifier found that way must still have the 8-4-4-4-12 hex shape.
    Values that cannot be discovered are asked for interactively and
    validated against the same rules.
    """

    def __init__(self, logger, console, paths: InstallPaths, run_cmd: Callable, validation_service, filesystem_service, prompts):
        self.logger = logger
        self.console = console
        self.paths = paths
        self.run_cmd = run_cmd
        self.validation = validation_service
        self.filesystem = filesystem_service
        self.prompts = prompts

    def login(self):
        self.filesystem.ensure_dir(self.paths.cloudflared_etc_dir)
        self.console.print("[blue][INFO][/blue] You will be redirected to authorize Cloudflare in your browser.")
        self.run_cmd(["cloudflared", "tunnel", "login"], check=False)
        self.install_certificate()

    def install_certificate(self) -> Path:
        cert = self.paths.cert_file
        if not cert.is_file():
            raise InstallerError(actionable_error("cert_missing", path=str(cert)))
        destination = self.paths.cloudflared_etc_dir / "cert.pem"
        self.filesystem.install_file(cert, destination, SECRET_MODE)
        return destination

    def _parse_json_listing(self, output: str) -> Optional[List[Any]]:
        try:
            data = json.loads(output)
        except (TypeError, ValueError):
            return None
        if isinstance(data, list):
            return data
        return None

    def find_tunnel(self, name: str) -> Tuple[bool, Optional[str]]:
        """Returns ``(found, tunnel_id)`` for the first tunnel listed under ``name``.

        A tunnel can be found while its identifier is unusable, in which case
        ``tunnel_id`` is None and the caller must not create a duplicate.
        """
        result = self.run_cmd(
            ["cloudflared", "tunnel", "list", "--output", "json"],
            check=False,
            capture_output=True,
        )
        tunnels = self._parse_json_listing(result.stdout) if result.returncode == 0 else None

        if tunnels is not None:
            for tunnel in tunnels:
                if isinstance(tunnel, dict) and tunnel.get("name") == name:
                    tunnel_id = str(tunnel.get("id", "")).strip().lower()
                    return True, tunnel_id if self.validation.is_tunnel_id(tunnel_id) else None
            return False, None

        self.logger.debug("JSON tunnel listing unavailable; falling back to text output.")
        result = self.run_cmd(["cloudflared", "tunnel", "list"], check=True, capture_output=True)
        return self.parse_text_listing(result.stdout, name)

    def parse_text_listing(self, output: str, name: str) -> Tuple[bool, Optional[str]]:
        for line in (output or "").splitlines():
            if name not in line:
                continue
            columns = line.split()
            candidate = columns[0].lower() if columns else ""
            if self.validation.is_tunnel_id(candidate):
                return True, candidate
            return True, self.validation.extract_uuid(line.lower())
        return False, None

    def create_tunnel(self, name: str) -> str:
        self.console.print(f"[blue][INFO][/blue] Creating new tunnel: {name}")
        result = self.run_cmd(["cloudflared", "tunnel", "create", name], check=True, capture_output=True)
        output = f"{result.stdout or ''}\n{result.stderr or ''}"
        tunnel_id = self.validation.extract_uuid(output)
        if tunnel_id:
            return tunnel_id

        self.console.print("[red][ERROR][/red] Could not extract tunnel ID.")
        self.console.print(output.strip(), markup=False)
        return self.prompt_tunnel_id()

    def prompt_tunnel_id(self) -> str:
        value = self.prompts.ask("tunnel_id", "Enter tunnel ID manually")
        return self.validation.validate_tunnel_id(value.lower())

    def resolve_tunnel(self, name: str) -> str:
        found, existing = self.find_tunnel(name)
        if found and not existing:
            self.console.print(
                f"[yellow][WARNING][/yellow] Tunnel {name} already exists but its ID could not be read."
            )
            return self.prompt_tunnel_id()
        if existing:
            self.console.print(f"[yellow][WARNING][/yellow] Tunnel {name} already exists.")
            self.console.print(f"[blue][INFO][/blue] Using existing tunnel ID: {existing}")
            return existing
        return self.create_tunnel(name)

    def find_credentials_file(self, tunnel_id: str) -> Optional[Path]:
        needle = tunnel_id.lower()
        for directory in self.paths.credential_search_dirs:
            if not self._searchable(directory):
                continue
            try:
                candidates = sorted(directory.rglob("*.json"))
            except OSError as exc:
                self.logger.debug("Cannot scan %s: %s", directory, exc)
                continue
            for candidate in candidates:
                if candidate.is_file() and needle in candidate.name.lower():
                    return candidate
        return None

    def _searchable(self, directory: Path) -> bool:
        # /root is usually 0700 for a sudo user.
        try:
            return directory.is_dir()
        except OSError as exc:
            self.logger.debug("Skipping unreadable %s: %s", directory, exc)
            return False

    def resolve_credentials_file(self, tunnel_id: str) -> Path:
        found = self.find_credentials_file(tunnel_id)
        if found:
            return found

        self.console.print("[red][ERROR][/red] Credential file not found.")
        value = self.prompts.ask("credentials_file", "Enter full path to JSON credential file")
        return self.validation.validate_existing_file(value)

    def install_credentials(self, tunnel_id: str, source: Path) -> Path:
        destination = self.paths.cloudflared_etc_dir / f"{tunnel_id}.json"
        if Path(source).resolve() == destination.resolve():
            self.filesystem.set_permissions(destination, SECRET_MODE)
            return destination
        self.filesystem.install_file(source, destination, SECRET_MODE)
        return destination

    def build_ingress_config(self, tunnel_id: str, credentials_file: Path, hostname: str) -> str:
        return f"""tunnel: {tunnel_id}
credentials-file: {credentials_file}
ingress:
  - hostname: {hostname}
    service: http://localhost:{N8N_HOST_PORT}
  - service: http_status:404
"""

    def write_ingress_config(self, tunnel_id: str, credentials_file: Path, hostname: str) -> Path:
        content = self.build_ingress_config(tunnel_id, credentials_file, hostname)
        self.filesystem.write_file(self.paths.tunnel_config_file, content, FILE_MODE)
        return self.paths.tunnel_config_file

    def route_dns(self, name: str, hostname: str):
        result = self.run_cmd(
            ["cloudflared", "tunnel", "route", "dns", name, hostname],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            # An existing record for the hostname is reported as an error.
            detail = (result.stderr or result.stdout or "").strip()
            self.console.print(
                f"[yellow][WARNING][/yellow] DNS route for {hostname} was not created: {escape(detail)}"
            )

    def provision(self, name: str, hostname: str) -> TunnelIdentity:
        """Runs the complete login, resolve, configure and route sequence."""
        self.console.print("[blue][INFO][/blue] Configuring Cloudflare Tunnel...")
        self.console.print(
            "[yellow][WARNING][/yellow] You must have a domain already added to Cloudflare. If not, exit now."
        )
        if not self.prompts.confirm():
            raise InstallerError("Tunnel configuration cancelled by user.")

        self.login()
        tunnel_id = self.resolve_tunnel(name)
        source = self.resolve_credentials_file(tunnel_id)
        credentials = self.install_credentials(tunnel_id, source)
        config_path = self.write_ingress_config(tunnel_id, credentials, hostname)
        self.route_dns(name, hostname)
        self.console.print(f"[green][SUCCESS][/green] Cloudflare Tunnel configured at {config_path}")
        return TunnelIdentity(tunnel_id=tunnel_id, name=name, credentials_file=credentials)
