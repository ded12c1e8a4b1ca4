from __future__ import annotations

import logging
import tempfile
import wave
from pathlib import Path
from typing import Optional

from common.config import MediaSettings
from common.errors import NormalizeTimeout, ToolCrashed, UnsupportedFormat
from common.process import CompletedRun, ProcessTimeout, run_bounded
from media.models import BIT_DEPTH, CHANNELS, SAMPLE_RATE, DecodedAudio, LocalPath
from toolchain.locator import ToolCache
from toolchain.specs import FFMPEG

logger = logging.getLogger(__name__)

# ffmpeg stderr fragments that mean the input itself could not be read
_UNREADABLE_INPUT = (
    "invalid data found when processing input",
    "could not find codec parameters",
    "does not contain any stream",
    "stream map '0:a:0' matches no streams",
    "unknown format",
    "moov atom not found",
    "error opening input",
)

# fragments that only mean a bad input when ffmpeg prefixes them with the input path
_UNREADABLE_PATH = (
    "no such file or directory",
    "invalid argument",
    "permission denied",
)


def normalize(
    source: LocalPath,
    tools: ToolCache,
    settings: MediaSettings | None = None,
) -> DecodedAudio:
    """Convert ``source`` to mono 16 kHz 16-bit PCM.

    A WAV file already in that format is returned as-is without invoking
    ffmpeg. Otherwise ffmpeg transcodes into a temp directory that is removed
    on every exit path, together with the ffmpeg process. ffmpeg is looked
    up through ``tools`` only when a conversion is actually needed.
    """
    settings = settings or MediaSettings()
    subject = str(source.path)

    try:
        audio = read_canonical_wav(source.path)
    except OSError as exc:
        raise UnsupportedFormat(f"cannot read input: {exc}", subject=subject) from exc
    if audio is not None:
        logger.info("%s is already 16 kHz mono PCM; skipping conversion", subject)
        return audio

    work_dir = settings.work_dir
    if work_dir is not None:
        Path(work_dir).mkdir(parents=True, exist_ok=True)
    tool = tools.ensure(FFMPEG)

    with tempfile.TemporaryDirectory(prefix="normalize-", dir=work_dir) as tmp:
        output = Path(tmp) / "converted_audio.wav"
        cmd = [
            str(tool.path),
            "-nostdin",
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-i", str(source.path),
            "-vn",
            "-map", "0:a:0",
            "-acodec", "pcm_s16le",
            "-ar", str(SAMPLE_RATE),
            "-ac", str(CHANNELS),
            "-f", "wav",
            str(output),
        ]
        logger.info("Converting %s to 16 kHz mono WAV", subject)
        try:
            result = run_bounded(cmd, settings.normalize_timeout_s, settings.kill_grace_s)
        except ProcessTimeout as exc:
            raise NormalizeTimeout(str(exc), subject=subject) from exc
        except OSError as exc:
            raise ToolCrashed(f"could not start {tool.path}: {exc}", subject=subject) from exc

        _check_exit(result, subject)

        if not output.is_file():
            raise UnsupportedFormat("decoder produced no audio output", subject=subject)
        audio = read_canonical_wav(output)
        if audio is None:
            raise UnsupportedFormat(
                f"decoder output is not {SAMPLE_RATE} Hz mono {BIT_DEPTH}-bit PCM", subject=subject
            )

    logger.info("Decoded %.1fs of audio (%d samples)", audio.duration_s, audio.num_samples)
    return audio


def _check_exit(result: CompletedRun, subject: str) -> None:
    if result.returncode == 0:
        return
    if result.returncode < 0:
        raise ToolCrashed(
            f"ffmpeg was killed by signal {-result.returncode}",
            subject=subject,
            returncode=result.returncode,
        )
    detail = result.last_error_line()
    if _unreadable_input(result.stderr, subject):
        raise UnsupportedFormat(f"unreadable input: {detail}", subject=subject)
    raise ToolCrashed(
        f"ffmpeg exited with code {result.returncode}: {detail}",
        subject=subject,
        returncode=result.returncode,
    )


def _unreadable_input(stderr: str, subject: str) -> bool:
    prefix = f"{subject}: ".lower()
    for line in stderr.lower().splitlines():
        if any(marker in line for marker in _UNREADABLE_INPUT):
            return True
        if line.startswith(prefix) and any(marker in line for marker in _UNREADABLE_PATH):
            return True
    return False


def read_canonical_wav(path: Path) -> Optional[DecodedAudio]:
    """Return the PCM payload of ``path`` if it is a canonical WAV file, else None."""
    try:
        with wave.open(str(path), "rb") as wf:
            if (
                wf.getframerate() != SAMPLE_RATE
                or wf.getnchannels() != CHANNELS
                or wf.getsampwidth() != BIT_DEPTH // 8
                or wf.getcomptype() != "NONE"
            ):
                return None
            data = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError):
        return None
    if len(data) % 2:
        return None
    return DecodedAudio(data=data)
