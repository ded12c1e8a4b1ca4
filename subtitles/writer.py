from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Sequence

from common.errors import WriteFailed
from common.schemas import OutputPaths, Segment

logger = logging.getLogger(__name__)


def format_timestamp(ms: int) -> str:
    """Format milliseconds as ``HH:MM:SS,mmm``; hours grow past 99 rather than wrap."""
    seconds, millis = divmod(ms, 1000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{millis:03d}"


def render_raw(segments: Sequence[Segment]) -> str:
    return " ".join(seg.text for seg in segments)


def render_srt(segments: Sequence[Segment]) -> str:
    blocks = [
        f"{i}\n{format_timestamp(seg.start_ms)} --> {format_timestamp(seg.end_ms)}\n{seg.text}\n"
        for i, seg in enumerate(segments, 1)
    ]
    return "\n".join(blocks)


def render_timestamps(segments: Sequence[Segment]) -> str:
    return "".join(
        f"[{format_timestamp(seg.start_ms)} --> {format_timestamp(seg.end_ms)}] {seg.text}\n"
        for seg in segments
    )


def write_outputs(
    segments: Sequence[Segment],
    base_name: str,
    output_dir: Path | str = ".",
) -> OutputPaths:
    """Write ``<base>_raw.txt``, ``<base>_timestamps.srt`` and ``<base>_timestamps.txt``."""
    output_dir = Path(output_dir)
    targets = {
        "raw_text": (output_dir / f"{base_name}_raw.txt", render_raw(segments)),
        "srt": (output_dir / f"{base_name}_timestamps.srt", render_srt(segments)),
        "timestamps": (output_dir / f"{base_name}_timestamps.txt", render_timestamps(segments)),
    }
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WriteFailed(f"cannot create output directory: {exc}", subject=str(output_dir)) from exc

    for path, content in targets.values():
        _write_atomic(path, content)
        logger.info("Wrote %s", path)

    return OutputPaths(**{key: str(path) for key, (path, _) in targets.items()})


def _write_atomic(path: Path, content: str) -> None:
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}-", suffix=".tmp", dir=path.parent)
    except OSError as exc:
        raise WriteFailed(f"directory is not writable: {exc}", subject=str(path)) from exc
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(content)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except OSError as exc:
        Path(tmp_name).unlink(missing_ok=True)
        raise WriteFailed(str(exc), subject=str(path)) from exc
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
