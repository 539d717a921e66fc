"""Actionable error catalog for the n8n installer."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "not_raspberry_pi": {
        "what": "This installer is designed to run on a Raspberry Pi.",
        "next": "Run it on a Raspberry Pi where {model_path} reports the board model.",
    },
    "insufficient_privileges": {
        "what": "This installer requires root or sudo privileges.",
        "next": "Run as root or as a user in the `sudo` group.",
    },
    "cert_missing": {
        "what": "cert.pem not found at {path}.",
        "next": "Make sure `cloudflared tunnel login` succeeded in the browser, then retry.",
    },
    "invalid_tunnel_id": {
        "what": "Invalid tunnel ID: {value}",
        "next": "Copy the ID from `cloudflared tunnel list`; it looks like 8-4-4-4-12 hex groups.",
    },
    "credentials_not_found": {
        "what": "Credential file not found: {path}",
        "next": "Look for `<tunnel-id>.json` under ~/.cloudflared or /root/.cloudflared.",
    },
    "tunnel_config_missing": {
        "what": "Tunnel configuration not found at {path}.",
        "next": "Configure the tunnel first (run the installer again from a fresh state).",
    },
    "docker_unavailable": {
        "what": "Docker is still not running after a restart.",
        "next": "Reboot the Pi and run the installer again; it will resume at service startup.",
    },
    "stack_start_failed": {
        "what": "n8n containers failed to start.",
        "next": "See logs with `cd {stack_dir} && docker-compose logs`.",
    },
    "tunnel_service_inactive": {
        "what": "cloudflared service failed to start.",
        "next": "Check with `sudo journalctl -u cloudflared`.",
    },
    "backup_missing": {
        "what": "Backup archive not found: {path}",
        "next": "List {backup_dir} and pass a date that has a complete backup.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
