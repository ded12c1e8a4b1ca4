from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from common.config import ToolSettings
from common.errors import ExtractionFailed, UnsupportedPlatform
from common.process import ProcessTimeout, run_bounded
from toolchain.download import download_archive, extract_executable
from toolchain.specs import FFMPEG, ToolSpec, current_platform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolHandle:
    name: str
    path: Path
    version: str


class ToolCache:
    """On-disk home for downloaded tools plus the handles resolved during this run.

    Pass one instance to every component that needs an external tool; it is
    never reached through module state.
    """

    def __init__(
        self,
        settings: ToolSettings | None = None,
        client: httpx.Client | None = None,
        platform_key: tuple[str, str] | None = None,
    ):
        self.settings = settings or ToolSettings()
        self.root = Path(self.settings.cache_dir)
        self._client = client
        self._platform = platform_key or current_platform()
        self._resolved: dict[str, ToolHandle] = {}

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def download_dir(self) -> Path:
        return self.root / "downloads"

    def ensure(self, spec: ToolSpec = FFMPEG) -> ToolHandle:
        handle = self._resolved.get(spec.name)
        if handle is not None:
            return handle

        handle = self._find_installed(spec)
        if handle is None:
            handle = self._install(spec)
        logger.info("Using %s %s at %s", handle.name, handle.version, handle.path)
        self._resolved[spec.name] = handle
        return handle

    def _find_installed(self, spec: ToolSpec) -> Optional[ToolHandle]:
        candidates = [self.bin_dir / spec.executable]
        if self.settings.search_system_path:
            found = shutil.which(spec.executable)
            if found:
                candidates.append(Path(found))

        for candidate in candidates:
            handle = self._verify(spec, candidate)
            if handle is not None:
                return handle
        return None

    def _verify(self, spec: ToolSpec, path: Path) -> Optional[ToolHandle]:
        if not path.is_file() or not os.access(path, os.X_OK):
            return None
        try:
            result = run_bounded([str(path), *spec.version_args], self.settings.probe_timeout_s)
        except (OSError, ProcessTimeout) as exc:
            logger.warning("Rejecting %s: %s", path, exc)
            return None
        if result.returncode != 0:
            logger.warning("Rejecting %s: version check exited with %d", path, result.returncode)
            return None
        version = spec.accepts(result.stdout or result.stderr)
        if version is None:
            logger.warning("Rejecting %s: unrecognized or incompatible version", path)
            return None
        return ToolHandle(name=spec.name, path=path, version=version)

    def _install(self, spec: ToolSpec) -> ToolHandle:
        source = spec.sources.get(self._platform)
        if source is None:
            os_name, arch = self._platform
            raise UnsupportedPlatform(f"no {spec.name} build available for {os_name}/{arch}", subject=spec.name)

        logger.info("%s not found; fetching %s build for %s/%s", spec.name, spec.name, *self._platform)
        client = self._client or httpx.Client(
            follow_redirects=True,
            timeout=httpx.Timeout(self.settings.download_timeout_s, connect=30.0),
        )
        try:
            archive = download_archive(
                source.url, self.download_dir, client, retries=self.settings.download_retries
            )
        finally:
            if self._client is None:
                client.close()

        target = self.bin_dir / spec.executable
        try:
            extract_executable(archive, source.kind, spec.executable, target)
        finally:
            archive.unlink(missing_ok=True)

        handle = self._verify(spec, target)
        if handle is None:
            raise ExtractionFailed(f"installed {spec.name} failed verification", subject=str(target))
        return handle


def ensure_tool(cache: ToolCache, spec: ToolSpec = FFMPEG) -> ToolHandle:
    return cache.ensure(spec)
