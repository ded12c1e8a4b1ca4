from __future__ import annotations

import logging
import lzma
import os
import shutil
import tarfile
import tempfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Optional

import httpx

from common.errors import ExtractionFailed, ToolDownloadFailed
from toolchain.specs import RAW, TAR, ZIP

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 16


class _TransientDownloadError(Exception):
    pass


def download_archive(
    url: str,
    dest_dir: Path,
    client: httpx.Client,
    retries: int = 1,
) -> Path:
    """Download ``url`` into a uniquely-named file in ``dest_dir`` and return its path.

    Transport failures, 5xx responses and truncated bodies are retried up to
    ``retries`` times; anything else fails immediately.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    failures = 0
    while True:
        try:
            return _fetch_once(url, dest_dir, client)
        except _TransientDownloadError as exc:
            failures += 1
            if failures > retries:
                raise ToolDownloadFailed(str(exc), subject=url) from exc.__cause__
            logger.warning("Download of %s failed (%s); retrying (%d/%d)", url, exc, failures, retries)


def _fetch_once(url: str, dest_dir: Path, client: httpx.Client) -> Path:
    fd, tmp_name = tempfile.mkstemp(prefix=".download-", suffix=".part", dir=dest_dir)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            logger.info("Downloading %s", url)
            with client.stream("GET", url) as resp:
                if resp.status_code >= 500:
                    raise _TransientDownloadError(f"server returned HTTP {resp.status_code}")
                if resp.status_code >= 400:
                    raise ToolDownloadFailed(f"server returned HTTP {resp.status_code}", subject=url)
                expected = _content_length(resp, url)
                written = 0
                for chunk in resp.iter_bytes(_CHUNK_SIZE):
                    fh.write(chunk)
                    written += len(chunk)
                # Content-Length counts encoded bytes when the body is compressed
                if resp.headers.get("content-encoding"):
                    received = resp.num_bytes_downloaded
                else:
                    received = written

        if written == 0:
            raise _TransientDownloadError("download is empty")
        if expected is not None and expected != received:
            raise _TransientDownloadError(
                f"download truncated: received {received} of {expected} bytes"
            )
        logger.info("Downloaded %d bytes", written)
        return tmp_path
    except httpx.TransportError as exc:
        tmp_path.unlink(missing_ok=True)
        raise _TransientDownloadError(f"{type(exc).__name__}: {exc}") from exc
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def _content_length(resp: httpx.Response, url: str) -> Optional[int]:
    value = resp.headers.get("content-length")
    if value is None:
        return None
    try:
        length = int(value)
    except ValueError:
        length = -1
    if length < 0:
        raise ToolDownloadFailed(f"malformed Content-Length header: {value!r}", subject=url)
    return length


def extract_executable(archive: Path, kind: str, executable: str, target: Path) -> Path:
    """Install the ``executable`` member of ``archive`` at ``target``.

    The binary is written to a unique temp name beside ``target`` and moved
    into place atomically, so concurrent installers never expose a partial file.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        if kind == RAW:
            with open(archive, "rb") as stream:
                _install_stream(stream, target)
        elif kind == ZIP:
            with zipfile.ZipFile(archive) as zf:
                member = _pick_member(
                    [info.filename for info in zf.infolist() if not info.is_dir()], executable
                )
                if member is None:
                    raise ExtractionFailed(f"{executable} not found in archive", subject=str(archive))
                with zf.open(member) as stream:
                    _install_stream(stream, target)
        elif kind == TAR:
            with tarfile.open(archive, "r:*") as tf:
                files = {m.name: m for m in tf.getmembers() if m.isfile()}
                member = _pick_member(list(files), executable)
                if member is None:
                    raise ExtractionFailed(f"{executable} not found in archive", subject=str(archive))
                stream = tf.extractfile(files[member])
                if stream is None:
                    raise ExtractionFailed(f"cannot read {member} from archive", subject=str(archive))
                with stream:
                    _install_stream(stream, target)
        else:
            raise ExtractionFailed(f"unknown archive kind {kind!r}", subject=str(archive))
    except (zipfile.BadZipFile, tarfile.TarError, lzma.LZMAError, EOFError) as exc:
        raise ExtractionFailed(f"corrupt archive: {exc}", subject=str(archive)) from exc
    except OSError as exc:
        raise ExtractionFailed(f"cannot install {executable}: {exc}", subject=str(target)) from exc

    logger.info("Installed %s", target)
    return target


def _pick_member(names: list[str], executable: str) -> Optional[str]:
    matches = [n for n in names if PurePosixPath(n).name == executable]
    if not matches:
        return None
    # Prefer the copy under a bin/ directory, then the shallowest path
    matches.sort(key=lambda n: ("bin" not in PurePosixPath(n).parts, n.count("/")))
    return matches[0]


def _install_stream(stream: BinaryIO, target: Path) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}-", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as out:
            shutil.copyfileobj(stream, out, _CHUNK_SIZE)
        os.chmod(tmp_name, 0o755)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
