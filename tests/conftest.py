import stat
import sys
import wave
from pathlib import Path

import numpy as np
import pytest

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses executable scripts")


def write_wav(path: Path, frames: int, rate: int = 16000, channels: int = 1) -> bytes:
    t = np.arange(frames * channels, dtype=np.float32)
    samples = (np.sin(t / 10.0) * 8000).astype("<i2").tobytes()
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(rate)
        wf.writeframes(samples)
    return samples


@pytest.fixture
def make_script(tmp_path):
    """Create an executable script in tmp_path/bin and return its path."""

    def _make(name: str, body: str, interpreter: str = sys.executable) -> Path:
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        path = bin_dir / name
        path.write_text(f"#!{interpreter}\n{body}")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make
