import hashlib

import pytest
from rich.console import Console

from guacsetup.errors import DownloadError
from guacsetup.services.download import DownloadService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class FakeResponse:
    def __init__(self, payload: bytes, status: int = 200):
        self.payload = payload
        self.status = status
        self.headers = {"Content-Length": str(len(payload))}

    @property
    def text(self):
        return self.payload.decode("utf-8")

    def raise_for_status(self):
        if self.status >= 400:
            raise FakeRequestsModule.RequestException(f"HTTP {self.status}")

    def iter_content(self, chunk_size=8192):
        yield self.payload[: len(self.payload) // 2]
        yield b""
        yield self.payload[len(self.payload) // 2 :]

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeRequestsModule:
    class RequestException(Exception):
        pass

    def __init__(self, payload: bytes, status: int = 200):
        self.payload = payload
        self.status = status
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return FakeResponse(self.payload, self.status)


def _service(requests_module, allow_insecure_http=False):
    return DownloadService(
        logger=DummyLogger(),
        console=Console(quiet=True),
        requests_module=requests_module,
        timeout=12.5,
        allow_insecure_http=allow_insecure_http,
    )


def test_download_file_writes_payload_and_passes_timeout(tmp_path):
    requests_module = FakeRequestsModule(b"war-bytes")
    destination = tmp_path / "nested" / "guacamole.war"

    _service(requests_module).download_file("https://example.invalid/guacamole.war", str(destination))

    assert destination.read_bytes() == b"war-bytes"
    url, kwargs = requests_module.calls[0]
    assert url == "https://example.invalid/guacamole.war"
    assert kwargs == {"stream": True, "timeout": 12.5}


def test_download_file_verifies_checksum(tmp_path):
    payload = b"archive"
    destination = tmp_path / "archive.tar.gz"
    service = _service(FakeRequestsModule(payload))

    service.download_file(
        "https://example.invalid/archive.tar.gz",
        str(destination),
        expected_sha256=hashlib.sha256(payload).hexdigest(),
    )
    assert destination.exists()

    with pytest.raises(DownloadError, match="Checksum mismatch"):
        service.download_file(
            "https://example.invalid/archive.tar.gz",
            str(destination),
            expected_sha256="0" * 64,
        )
    assert not destination.exists()


def test_download_file_http_error_discards_partial_file(tmp_path):
    destination = tmp_path / "archive.tar.gz"
    destination.write_bytes(b"old partial")

    with pytest.raises(DownloadError, match="Download failed"):
        _service(FakeRequestsModule(b"", status=404)).download_file(
            "https://example.invalid/archive.tar.gz", str(destination)
        )

    assert not destination.exists()


def test_insecure_http_is_rejected_by_default(tmp_path):
    requests_module = FakeRequestsModule(b"data")

    with pytest.raises(DownloadError, match="insecure HTTP"):
        _service(requests_module).download_file("http://example.invalid/a", str(tmp_path / "a"))

    assert requests_module.calls == []


def test_insecure_http_can_be_allowed(tmp_path):
    requests_module = FakeRequestsModule(b"data")

    _service(requests_module, allow_insecure_http=True).download_file(
        "http://mirror.local/a", str(tmp_path / "a")
    )

    assert (tmp_path / "a").read_bytes() == b"data"


def test_unsupported_scheme_is_rejected():
    with pytest.raises(DownloadError, match="Unsupported URL scheme"):
        _service(FakeRequestsModule(b"")).fetch_text("ftp://example.invalid/", label="index")


def test_fetch_text_returns_body_and_wraps_errors():
    assert _service(FakeRequestsModule(b"<html>listing</html>")).fetch_text(
        "https://example.invalid/"
    ) == "<html>listing</html>"

    with pytest.raises(DownloadError, match="Could not fetch"):
        _service(FakeRequestsModule(b"", status=503)).fetch_text("https://example.invalid/")
