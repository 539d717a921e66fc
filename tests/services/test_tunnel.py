import json
import subprocess
from pathlib import Path

import pytest
import yaml

from n8ninstaller.errors import InstallerError
from n8ninstaller.models import InstallPaths
from n8ninstaller.services.filesystem import FileSystemService
from n8ninstaller.services.tunnel import TunnelService
from n8ninstaller.services.validation import ValidationService

TUNNEL_ID = "6ff42ae2-765d-4adf-8112-31c55c1551ef"
OTHER_ID = "0a1b2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d"


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class ScriptedPrompts:
    def __init__(self, answers=None, confirm=True):
        self.answers = dict(answers or {})
        self.asked = []
        self._confirm = confirm

    def ask(self, key, question, default=None, password=False):
        self.asked.append(key)
        if key not in self.answers:
            raise AssertionError(f"unexpected prompt: {key}")
        return self.answers[key]

    def confirm(self, question="Do you want to continue?", default=False):
        return self._confirm


class FakeCloudflared:
    """Answers cloudflared invocations from canned outputs and records them."""

    def __init__(self, json_listing="[]", text_listing="", create_output="", json_returncode=0):
        self.json_listing = json_listing
        self.text_listing = text_listing
        self.create_output = create_output
        self.json_returncode = json_returncode
        self.calls = []

    def __call__(self, cmd, check=True, capture_output=False, **_kwargs):
        self.calls.append(cmd)
        if cmd[:3] == ["cloudflared", "tunnel", "list"] and "--output" in cmd:
            return subprocess.CompletedProcess(cmd, self.json_returncode, stdout=self.json_listing, stderr="")
        if cmd[:3] == ["cloudflared", "tunnel", "list"]:
            return subprocess.CompletedProcess(cmd, 0, stdout=self.text_listing, stderr="")
        if cmd[:3] == ["cloudflared", "tunnel", "create"]:
            return subprocess.CompletedProcess(cmd, 0, stdout=self.create_output, stderr="")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


def _paths(tmp_path) -> InstallPaths:
    home = tmp_path / "home" / "pi"
    home.mkdir(parents=True)
    return InstallPaths(home=home, root=tmp_path / "root")


def _service(tmp_path, run_cmd, prompts=None) -> TunnelService:
    return TunnelService(
        logger=DummyLogger(),
        console=DummyConsole(),
        paths=_paths(tmp_path),
        run_cmd=run_cmd,
        validation_service=ValidationService(),
        filesystem_service=FileSystemService(logger=DummyLogger(), console=DummyConsole()),
        prompts=prompts or ScriptedPrompts(),
    )


def test_create_tunnel_extracts_uuid_from_output(tmp_path):
    fake = FakeCloudflared(
        create_output=f"Created tunnel n8n-tunnel with id {TUNNEL_ID}\n",
    )
    service = _service(tmp_path, fake)

    assert service.resolve_tunnel("n8n-tunnel") == TUNNEL_ID
    assert ["cloudflared", "tunnel", "create", "n8n-tunnel"] in fake.calls


def test_create_tunnel_prompts_when_output_has_no_uuid(tmp_path):
    fake = FakeCloudflared(create_output="Created tunnel n8n-tunnel\n")
    prompts = ScriptedPrompts({"tunnel_id": TUNNEL_ID.upper()})
    service = _service(tmp_path, fake, prompts)

    assert service.resolve_tunnel("n8n-tunnel") == TUNNEL_ID
    assert prompts.asked == ["tunnel_id"]


def test_manual_tunnel_id_must_match_uuid_shape(tmp_path):
    fake = FakeCloudflared(create_output="error: something odd\n")
    service = _service(tmp_path, fake, ScriptedPrompts({"tunnel_id": "not-a-tunnel"}))

    with pytest.raises(InstallerError, match="Invalid tunnel ID"):
        service.resolve_tunnel("n8n-tunnel")


def test_existing_tunnel_is_reused_from_json_listing(tmp_path):
    listing = json.dumps(
        [
            {"id": OTHER_ID, "name": "n8n-tunnel-old"},
            {"id": TUNNEL_ID, "name": "n8n-tunnel"},
        ]
    )
    fake = FakeCloudflared(json_listing=listing)
    service = _service(tmp_path, fake)

    assert service.resolve_tunnel("n8n-tunnel") == TUNNEL_ID
    assert not any(cmd[:3] == ["cloudflared", "tunnel", "create"] for cmd in fake.calls)


def test_text_listing_is_used_when_json_is_unavailable(tmp_path):
    text = (
        "You can obtain more detailed information for each tunnel with `cloudflared tunnel info <name/uuid>`\n"
        "ID                                   NAME        CREATED              CONNECTIONS\n"
        f"{TUNNEL_ID} n8n-tunnel  2024-01-01T10:00:00Z 2xWAW\n"
    )
    fake = FakeCloudflared(json_listing="not json", text_listing=text, json_returncode=1)
    service = _service(tmp_path, fake)

    assert service.find_tunnel("n8n-tunnel") == (True, TUNNEL_ID)


def test_named_tunnel_with_unreadable_json_id_prompts_instead_of_creating(tmp_path):
    fake = FakeCloudflared(json_listing=json.dumps([{"id": "garbled", "name": "n8n-tunnel"}]))
    prompts = ScriptedPrompts({"tunnel_id": TUNNEL_ID})
    service = _service(tmp_path, fake, prompts)

    assert service.resolve_tunnel("n8n-tunnel") == TUNNEL_ID
    assert prompts.asked == ["tunnel_id"]
    assert not any(cmd[:3] == ["cloudflared", "tunnel", "create"] for cmd in fake.calls)


def test_named_tunnel_in_text_listing_without_uuid_prompts(tmp_path):
    text = "ID NAME CREATED\n<redacted> n8n-tunnel 2024-01-01T10:00:00Z\n"
    fake = FakeCloudflared(json_listing="", text_listing=text, json_returncode=1)
    prompts = ScriptedPrompts({"tunnel_id": TUNNEL_ID})
    service = _service(tmp_path, fake, prompts)

    assert service.resolve_tunnel("n8n-tunnel") == TUNNEL_ID
    assert not any(cmd[:3] == ["cloudflared", "tunnel", "create"] for cmd in fake.calls)


def test_unknown_tunnel_name_is_not_found(tmp_path):
    fake = FakeCloudflared(json_listing=json.dumps([{"id": TUNNEL_ID, "name": "other"}]))

    assert _service(tmp_path, fake).find_tunnel("n8n-tunnel") == (False, None)


def test_credentials_file_matching_tunnel_id_is_selected(tmp_path):
    service = _service(tmp_path, FakeCloudflared())
    root_dir, user_dir = service.paths.credential_search_dirs
    root_dir.mkdir(parents=True)
    user_dir.mkdir(parents=True)
    (root_dir / f"{OTHER_ID}.json").write_text("{}", encoding="utf-8")
    (user_dir / "cert.json").write_text("{}", encoding="utf-8")
    expected = user_dir / f"{TUNNEL_ID}.json"
    expected.write_text('{"TunnelID": "x"}', encoding="utf-8")

    assert service.find_credentials_file(TUNNEL_ID) == expected


def test_unreadable_root_credentials_dir_is_skipped(tmp_path, monkeypatch):
    service = _service(tmp_path, FakeCloudflared())
    root_dir, user_dir = service.paths.credential_search_dirs
    user_dir.mkdir(parents=True)
    expected = user_dir / f"{TUNNEL_ID}.json"
    expected.write_text("{}", encoding="utf-8")
    original_is_dir = Path.is_dir

    def is_dir(path, *args, **kwargs):
        if path == root_dir:
            raise PermissionError(13, "Permission denied", str(path))
        return original_is_dir(path, *args, **kwargs)

    monkeypatch.setattr(Path, "is_dir", is_dir)

    assert service.find_credentials_file(TUNNEL_ID) == expected


def test_unrelated_credentials_require_manual_path(tmp_path):
    manual = tmp_path / "creds.json"
    manual.write_text("{}", encoding="utf-8")
    prompts = ScriptedPrompts({"credentials_file": str(manual)})
    service = _service(tmp_path, FakeCloudflared(), prompts)
    user_dir = service.paths.user_cloudflared_dir
    user_dir.mkdir(parents=True)
    (user_dir / f"{OTHER_ID}.json").write_text("{}", encoding="utf-8")

    assert service.resolve_credentials_file(TUNNEL_ID) == manual
    assert prompts.asked == ["credentials_file"]


def test_manual_credentials_path_must_exist(tmp_path):
    prompts = ScriptedPrompts({"credentials_file": str(tmp_path / "missing.json")})
    service = _service(tmp_path, FakeCloudflared(), prompts)

    with pytest.raises(InstallerError, match="Credential file not found"):
        service.resolve_credentials_file(TUNNEL_ID)


def test_install_credentials_replaces_stale_file(tmp_path):
    service = _service(tmp_path, FakeCloudflared())
    source = tmp_path / "fresh.json"
    source.write_text('{"fresh": true}', encoding="utf-8")
    stale = service.paths.cloudflared_etc_dir / f"{TUNNEL_ID}.json"
    stale.parent.mkdir(parents=True)
    stale.write_text('{"stale": true}', encoding="utf-8")

    installed = service.install_credentials(TUNNEL_ID, source)

    assert installed == stale
    assert installed.read_text(encoding="utf-8") == '{"fresh": true}'
    assert (installed.stat().st_mode & 0o777) == 0o600


def test_ingress_config_maps_hostname_and_ends_with_catch_all(tmp_path):
    service = _service(tmp_path, FakeCloudflared())
    credentials = service.paths.cloudflared_etc_dir / f"{TUNNEL_ID}.json"

    config_path = service.write_ingress_config(TUNNEL_ID, credentials, "example.org")

    config = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert config["tunnel"] == TUNNEL_ID
    assert config["credentials-file"] == str(credentials)
    assert config["ingress"][0] == {"hostname": "example.org", "service": "http://localhost:8443"}
    assert config["ingress"][-1] == {"service": "http_status:404"}


def test_provision_fails_without_certificate(tmp_path):
    service = _service(tmp_path, FakeCloudflared())

    with pytest.raises(InstallerError, match="cert.pem not found"):
        service.provision("n8n-tunnel", "example.org")


def test_provision_declined_confirmation_is_fatal(tmp_path):
    fake = FakeCloudflared()
    service = _service(tmp_path, fake, ScriptedPrompts(confirm=False))

    with pytest.raises(InstallerError, match="cancelled"):
        service.provision("n8n-tunnel", "example.org")
    assert fake.calls == []


def test_provision_routes_dns_after_writing_config(tmp_path):
    fake = FakeCloudflared(create_output=f"Created tunnel n8n-tunnel with id {TUNNEL_ID}\n")
    service = _service(tmp_path, fake)
    service.paths.user_cloudflared_dir.mkdir(parents=True)
    service.paths.cert_file.write_text("cert", encoding="utf-8")
    (service.paths.user_cloudflared_dir / f"{TUNNEL_ID}.json").write_text("{}", encoding="utf-8")

    identity = service.provision("n8n-tunnel", "example.org")

    assert identity.tunnel_id == TUNNEL_ID
    assert identity.credentials_file == service.paths.cloudflared_etc_dir / f"{TUNNEL_ID}.json"
    assert (service.paths.cloudflared_etc_dir / "cert.pem").read_text(encoding="utf-8") == "cert"
    assert fake.calls[-1] == ["cloudflared", "tunnel", "route", "dns", "n8n-tunnel", "example.org"]
