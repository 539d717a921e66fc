import subprocess
from pathlib import Path

import pytest

from n8ninstaller.errors import InstallerError
from n8ninstaller.services.filesystem import FileSystemService
from n8ninstaller.services.packages import PackageService


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


class FakeCommandRunner:
    def __init__(self, installed=()):
        self.installed = set(installed)
        self.calls = []

    def command_exists(self, name):
        return name in self.installed

    def run(self, cmd, check=True, capture_output=False, privileged=False, **_kwargs):
        self.calls.append((cmd, privileged))
        return subprocess.CompletedProcess(cmd, 0, stdout="cloudflared version 2024.6.1\n", stderr="")


class FakeDownloadService:
    def __init__(self, payload=b"binary"):
        self.payload = payload
        self.urls = []

    def download_file(self, url, dest_path, description="Downloading..."):
        self.urls.append(url)
        Path(dest_path).write_bytes(self.payload)
        return Path(dest_path)


def _service(runner, downloads=None) -> PackageService:
    return PackageService(
        logger=DummyLogger(),
        console=DummyConsole(),
        command_runner=runner,
        download_service=downloads or FakeDownloadService(),
        filesystem_service=FileSystemService(logger=DummyLogger(), console=DummyConsole()),
    )


def test_update_system_runs_apt_privileged():
    runner = FakeCommandRunner()

    _service(runner).update_system()

    assert runner.calls == [(["apt", "update"], True), (["apt", "upgrade", "-y"], True)]


def test_install_docker_skips_when_present():
    runner = FakeCommandRunner(installed={"docker"})
    downloads = FakeDownloadService()

    assert _service(runner, downloads).install_docker() is False
    assert runner.calls == []
    assert downloads.urls == []


def test_install_docker_runs_convenience_script_and_adds_group(monkeypatch):
    monkeypatch.setenv("SUDO_USER", "pi")
    runner = FakeCommandRunner()
    downloads = FakeDownloadService(b"#!/bin/sh\n")

    assert _service(runner, downloads).install_docker() is True
    assert downloads.urls == ["https://get.docker.com"]
    assert runner.calls[0][0][0] == "sh"
    assert runner.calls[0][0][1].endswith("get-docker.sh")
    assert runner.calls[1] == (["usermod", "-aG", "docker", "pi"], True)


def test_install_docker_compose_skips_when_present():
    runner = FakeCommandRunner(installed={"docker-compose"})

    _service(runner).install_docker_compose()

    assert runner.calls == []


def test_install_docker_compose_uses_apt():
    runner = FakeCommandRunner()

    _service(runner).install_docker_compose()

    assert runner.calls == [(["apt", "install", "-y", "docker-compose"], True)]


@pytest.mark.parametrize(
    ("machine", "expected"),
    [("aarch64", "arm64"), ("armv7l", "arm"), ("armv6l", "arm"), ("x86_64", "amd64")],
)
def test_cloudflared_arch_mapping(machine, expected):
    assert _service(FakeCommandRunner()).cloudflared_arch(machine) == expected


def test_cloudflared_arch_rejects_unknown_machine():
    with pytest.raises(InstallerError, match="Unsupported CPU architecture"):
        _service(FakeCommandRunner()).cloudflared_arch("riscv64")


def test_install_cloudflared_installs_release_binary(tmp_path, monkeypatch):
    monkeypatch.setattr("n8ninstaller.services.packages.platform.machine", lambda: "aarch64")
    runner = FakeCommandRunner()
    downloads = FakeDownloadService(b"\x7fELF")
    binary = tmp_path / "usr" / "local" / "bin" / "cloudflared"

    _service(runner, downloads).install_cloudflared(binary, version_probe=lambda: "2024.6.1")

    assert downloads.urls == [
        "https://github.com/cloudflare/cloudflared/releases/latest/download/cloudflared-linux-arm64"
    ]
    assert binary.read_bytes() == b"\x7fELF"
    assert (binary.stat().st_mode & 0o777) == 0o755


def test_install_cloudflared_skips_when_present(tmp_path):
    runner = FakeCommandRunner(installed={"cloudflared"})
    downloads = FakeDownloadService()

    _service(runner, downloads).install_cloudflared(tmp_path / "cloudflared", version_probe=lambda: "x")

    assert downloads.urls == []
