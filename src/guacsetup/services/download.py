"""Download service with progress reporting and checksum validation."""

import hashlib
import os
from typing import Optional
from urllib.parse import urlparse

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from guacsetup.errors import DownloadError
from guacsetup.errors_catalog import actionable_error


class DownloadService:
    """Fetches index pages and release archives over HTTP(S)."""

    def __init__(
        self,
        logger,
        console,
        requests_module,
        timeout: float = 60.0,
        allow_insecure_http: bool = False,
    ):
        self.logger = logger
        self.console = console
        self.requests = requests_module
        self.timeout = timeout
        self.allow_insecure_http = allow_insecure_http

    def enforce_https_policy(self, url: str, label: str):
        scheme = urlparse(url).scheme.lower()
        if scheme == "https":
            return
        if scheme == "http" and self.allow_insecure_http:
            self.logger.warning("Insecure HTTP enabled for %s: %s", label, url)
            return
        if scheme == "http":
            raise DownloadError(actionable_error("insecure_http", label=label))
        raise DownloadError(f"Unsupported URL scheme for {label}: {url}")

    def fetch_text(self, url: str, label: str = "index") -> str:
        """Return the body of a small text resource such as a directory listing."""
        self.enforce_https_policy(url, label)
        self.logger.debug("Fetching %s", url)
        try:
            response = self.requests.get(url, timeout=self.timeout)
            response.raise_for_status()
        except self.requests.RequestException as exc:
            raise DownloadError(f"Could not fetch {label} {url}: {exc}") from exc
        return response.text

    def download_file(
        self,
        url: str,
        dest_path: str,
        description: str = "Downloading...",
        expected_sha256: Optional[str] = None,
    ):
        self.logger.info("Downloading %s to %s", url, dest_path)
        self.enforce_https_policy(url, description)

        hasher = hashlib.sha256() if expected_sha256 else None

        try:
            with self.requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("Content-Length", 0))

                os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)

                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TaskProgressColumn(),
                    "•",
                    TimeElapsedColumn(),
                    console=self.console,
                ) as progress:
                    task = progress.add_task(f"[cyan]{description}", total=total_size or None)
                    with open(dest_path, "wb") as file_obj:
                        for chunk in response.iter_content(chunk_size=8192):
                            if not chunk:
                                continue
                            file_obj.write(chunk)
                            if hasher:
                                hasher.update(chunk)
                            progress.update(task, advance=len(chunk))
        except self.requests.RequestException as exc:
            self._discard(dest_path)
            raise DownloadError(f"Download failed for {description}: {exc}") from exc
        except OSError as exc:
            self._discard(dest_path)
            raise DownloadError(f"Could not write {dest_path}: {exc}") from exc

        if hasher:
            downloaded_sha = hasher.hexdigest()
            if downloaded_sha != expected_sha256:
                self._discard(dest_path)
                raise DownloadError(
                    f"Checksum mismatch for {description}. Expected {expected_sha256}, "
                    f"but got {downloaded_sha}."
                )

    def _discard(self, path: str):
        try:
            os.remove(path)
        except OSError:
            pass
