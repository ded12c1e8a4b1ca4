from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import urlparse

from common.config import MediaSettings
from common.errors import SourceDownloadFailed, SourceNotFound
from common.process import ProcessTimeout, run_bounded
from media.models import LocalPath, MediaSource, RemoteReference
from toolchain.locator import ToolCache, ToolHandle
from toolchain.specs import YT_DLP

logger = logging.getLogger(__name__)

_URL_SCHEMES = ("http", "https")


def classify(value: str) -> MediaSource:
    """Decide whether ``value`` names a local file or a remote media URL."""
    path = Path(value).expanduser()
    if path.is_file():
        return LocalPath(path)

    parsed = urlparse(value.strip())
    if parsed.scheme.lower() in _URL_SCHEMES and parsed.netloc:
        return RemoteReference(value.strip())

    raise SourceNotFound("no such file and not an http(s) URL", subject=value)


class Downloader(Protocol):
    def fetch(self, ref: RemoteReference, dest_dir: Path) -> LocalPath: ...


class YtDlpDownloader:
    """Fetches the best available audio stream of an online video with yt-dlp."""

    def __init__(self, tool: ToolHandle, settings: MediaSettings | None = None):
        self.tool = tool
        self.settings = settings or MediaSettings()

    def fetch(self, ref: RemoteReference, dest_dir: Path) -> LocalPath:
        cmd = [
            str(self.tool.path),
            "--no-playlist",
            "--no-progress",
            "--restrict-filenames",
            "-f", "bestaudio/best",
            "-o", str(dest_dir / "%(title).80B-%(id)s.%(ext)s"),
            "--print", "after_move:filepath",
            ref.url,
        ]
        logger.info("Downloading audio from %s", ref.url)
        try:
            result = run_bounded(cmd, self.settings.download_timeout_s, self.settings.kill_grace_s)
        except ProcessTimeout as exc:
            raise SourceDownloadFailed(str(exc), subject=ref.url) from exc
        except OSError as exc:
            raise SourceDownloadFailed(f"could not start {self.tool.path}: {exc}", subject=ref.url) from exc

        if result.returncode != 0:
            raise SourceDownloadFailed(result.last_error_line(), subject=ref.url)

        downloaded = _downloaded_file(result.stdout, dest_dir)
        if downloaded is None:
            raise SourceDownloadFailed("downloader reported success but produced no file", subject=ref.url)
        logger.info("Downloaded %s", downloaded.name)
        return LocalPath(downloaded)


def _downloaded_file(stdout: str, dest_dir: Path) -> Optional[Path]:
    for line in reversed(stdout.splitlines()):
        candidate = Path(line.strip())
        if line.strip() and candidate.is_file():
            return candidate
    files = sorted(
        p for p in dest_dir.iterdir() if p.is_file() and p.suffix not in (".part", ".ytdl")
    )
    return files[0] if files else None


class SourceResolver:
    """Turns a CLI input into a local file, owning any temporary downloads.

    Use as a context manager; downloaded files are removed on exit whether the
    run succeeded, failed or was interrupted.
    """

    def __init__(
        self,
        cache: ToolCache,
        settings: MediaSettings | None = None,
        downloader: Downloader | None = None,
    ):
        self.cache = cache
        self.settings = settings or MediaSettings()
        self._downloader = downloader
        self._tmp: tempfile.TemporaryDirectory | None = None

    def resolve(self, value: str | MediaSource) -> LocalPath:
        source = classify(value) if isinstance(value, str) else value
        if isinstance(source, LocalPath):
            logger.info("Input is a local file: %s", source.path)
            return source
        return self._fetch(source)

    def _fetch(self, ref: RemoteReference) -> LocalPath:
        if self._downloader is None:
            self._downloader = YtDlpDownloader(self.cache.ensure(YT_DLP), self.settings)
        if self._tmp is None:
            work_dir = self.settings.work_dir
            if work_dir is not None:
                Path(work_dir).mkdir(parents=True, exist_ok=True)
            self._tmp = tempfile.TemporaryDirectory(prefix="download-", dir=work_dir)
        return self._downloader.fetch(ref, Path(self._tmp.name))

    def close(self) -> None:
        if self._tmp is not None:
            logger.debug("Removing downloads in %s", self._tmp.name)
            self._tmp.cleanup()
            self._tmp = None

    def __enter__(self) -> "SourceResolver":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
