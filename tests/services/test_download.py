import pytest
from rich.console import Console

from n8ninstaller.errors import InstallerError
from n8ninstaller.services.download import DownloadService


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class FakeResponse:
    def __init__(self, chunks, fail_after=None, error=None):
        self.chunks = chunks
        self.fail_after = fail_after
        self.error = error
        self.headers = {"Content-Length": str(sum(len(chunk) for chunk in chunks))}

    def raise_for_status(self):
        return None

    def iter_content(self, chunk_size=8192):
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index == self.fail_after:
                raise self.error
            yield chunk

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeRequestsModule:
    class RequestException(Exception):
        pass

    def __init__(self, chunks, fail_after=None):
        self.chunks = chunks
        self.fail_after = fail_after
        self.urls = []

    def get(self, url, **_kwargs):
        self.urls.append(url)
        return FakeResponse(
            self.chunks,
            fail_after=self.fail_after,
            error=self.RequestException("connection reset"),
        )


def _service(requests_module) -> DownloadService:
    return DownloadService(
        logger=DummyLogger(),
        console=Console(record=True),
        requests_module=requests_module,
    )


def test_download_file_writes_streamed_chunks(tmp_path):
    requests_module = FakeRequestsModule([b"#!/bin/sh\n", b"echo docker\n"])
    destination = tmp_path / "nested" / "get-docker.sh"

    result = _service(requests_module).download_file("https://get.docker.com", destination, "Docker script")

    assert result == destination
    assert destination.read_bytes() == b"#!/bin/sh\necho docker\n"
    assert requests_module.urls == ["https://get.docker.com"]


def test_download_file_refuses_plain_http(tmp_path):
    requests_module = FakeRequestsModule([b"payload"])

    with pytest.raises(InstallerError, match="insecure URL"):
        _service(requests_module).download_file("http://get.docker.com", tmp_path / "script.sh")
    assert requests_module.urls == []


def test_download_file_removes_partial_file_on_failure(tmp_path):
    requests_module = FakeRequestsModule([b"part-one", b"part-two"], fail_after=1)
    destination = tmp_path / "cloudflared"

    with pytest.raises(InstallerError, match="Download failed"):
        _service(requests_module).download_file("https://example.org/cloudflared", destination, "cloudflared")
    assert not destination.exists()
