"""Download service with progress reporting."""

import os
from pathlib import Path
from urllib.parse import urlparse

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from n8ninstaller.errors import InstallerError


class DownloadService:
    """Fetches installer scripts and release binaries over HTTPS."""

    def __init__(self, logger, console, requests_module, timeout: float = 60.0):
        self.logger = logger
        self.console = console
        self.requests = requests_module
        self.timeout = timeout

    def download_file(self, url: str, dest_path: Path, description: str = "Downloading..."):
        if urlparse(url).scheme.lower() != "https":
            raise InstallerError(f"Refusing to download {description} over insecure URL: {url}")

        self.logger.info("Downloading %s to %s", url, dest_path)
        dest_path = Path(dest_path)

        try:
            with self.requests.get(url, stream=True, timeout=self.timeout, allow_redirects=True) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("Content-Length", 0))

                os.makedirs(dest_path.parent, exist_ok=True)

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
                            progress.update(task, advance=len(chunk))

        except self.requests.RequestException as exc:
            if dest_path.exists():
                dest_path.unlink()
            raise InstallerError(f"Download failed for {description}: {exc}") from exc

        return dest_path
