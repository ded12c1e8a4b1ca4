"""External executables the pipeline depends on and where to fetch them."""

from __future__ import annotations

import platform
import re
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional

# Archive formats understood by toolchain.download.extract_executable
ZIP = "zip"
TAR = "tar"
RAW = "raw"


@dataclass(frozen=True)
class ArchiveSource:
    url: str
    kind: str = ZIP


@dataclass(frozen=True)
class ToolSpec:
    name: str
    version_args: tuple[str, ...]
    accepts: Callable[[str], Optional[str]]
    sources: dict[tuple[str, str], ArchiveSource] = field(default_factory=dict)
    executable_override: Optional[str] = None

    @property
    def executable(self) -> str:
        if self.executable_override:
            return self.executable_override
        return f"{self.name}.exe" if sys.platform == "win32" else self.name


def current_platform() -> tuple[str, str]:
    """Return ``(os, arch)`` normalized to the keys used in source tables."""
    if sys.platform.startswith("linux"):
        os_name = "linux"
    elif sys.platform == "darwin":
        os_name = "darwin"
    elif sys.platform == "win32":
        os_name = "windows"
    else:
        os_name = sys.platform

    machine = platform.machine().lower()
    arch = {
        "amd64": "x86_64",
        "x64": "x86_64",
        "aarch64": "arm64",
        "armv8l": "arm64",
    }.get(machine, machine)
    return os_name, arch


_FFMPEG_VERSION_RE = re.compile(r"ffmpeg version\s+n?(\S+)")
_MIN_FFMPEG_MAJOR = 4


def ffmpeg_version(output: str) -> Optional[str]:
    """Extract a usable FFmpeg version from ``ffmpeg -version`` output.

    Git snapshot builds report versions such as ``2024-05-13-git-...`` or
    ``N-115000-g...``; those are accepted as-is since they postdate 4.x.
    """
    match = _FFMPEG_VERSION_RE.search(output)
    if not match:
        return None
    version = match.group(1)
    major = re.match(r"(\d+)\.", version)
    if major and int(major.group(1)) < _MIN_FFMPEG_MAJOR:
        return None
    return version


def ytdlp_version(output: str) -> Optional[str]:
    line = output.strip().splitlines()[0] if output.strip() else ""
    return line if re.match(r"^\d{4}\.\d{2}\.\d{2}", line) else None


FFMPEG = ToolSpec(
    name="ffmpeg",
    version_args=("-version",),
    accepts=ffmpeg_version,
    sources={
        ("linux", "x86_64"): ArchiveSource(
            "https://johnvansickle.com/ffmpeg/releases/ffmpeg-release-amd64-static.tar.xz", TAR
        ),
        ("linux", "arm64"): ArchiveSource(
            "https://johnvansickle.com/ffmpeg/releases/ffmpeg-release-arm64-static.tar.xz", TAR
        ),
        ("windows", "x86_64"): ArchiveSource(
            "https://www.gyan.dev/ffmpeg/builds/ffmpeg-release-essentials.zip", ZIP
        ),
        # evermeet builds are x86_64; Apple Silicon runs them under Rosetta.
        ("darwin", "x86_64"): ArchiveSource("https://evermeet.cx/ffmpeg/getrelease/zip", ZIP),
        ("darwin", "arm64"): ArchiveSource("https://evermeet.cx/ffmpeg/getrelease/zip", ZIP),
    },
)

_YTDLP_RELEASES = "https://github.com/yt-dlp/yt-dlp/releases/latest/download"

YT_DLP = ToolSpec(
    name="yt-dlp",
    version_args=("--version",),
    accepts=ytdlp_version,
    sources={
        ("linux", "x86_64"): ArchiveSource(f"{_YTDLP_RELEASES}/yt-dlp_linux", RAW),
        ("linux", "arm64"): ArchiveSource(f"{_YTDLP_RELEASES}/yt-dlp_linux_aarch64", RAW),
        ("windows", "x86_64"): ArchiveSource(f"{_YTDLP_RELEASES}/yt-dlp.exe", RAW),
        ("darwin", "x86_64"): ArchiveSource(f"{_YTDLP_RELEASES}/yt-dlp_macos", RAW),
        ("darwin", "arm64"): ArchiveSource(f"{_YTDLP_RELEASES}/yt-dlp_macos", RAW),
    },
)
