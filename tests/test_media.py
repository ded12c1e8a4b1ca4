import os
import signal
import sys
import time
from pathlib import Path

import numpy as np
import pytest

from common.config import MediaSettings
from common.errors import (
    NormalizeTimeout,
    SourceDownloadFailed,
    SourceNotFound,
    ToolCrashed,
    UnsupportedFormat,
)
from common.process import ProcessTimeout, managed_process, run_bounded
from conftest import posix_only, write_wav
from media.models import DecodedAudio, LocalPath, RemoteReference
from media.normalizer import normalize, read_canonical_wav
from media.resolver import SourceResolver, YtDlpDownloader, classify
from toolchain.locator import ToolHandle

# Writes a canonical WAV of 8000 samples to the last argument, like ffmpeg would
CONVERTING_FFMPEG = """\
import sys, wave
with wave.open(sys.argv[-1], "wb") as wf:
    wf.setnchannels(1)
    wf.setsampwidth(2)
    wf.setframerate(16000)
    wf.writeframes(b"\\x01\\x00" * 8000)
"""

# Writes part of the output, records its pid, then hangs
HANGING_FFMPEG = """\
import os, sys, time
open(sys.argv[-1], "wb").write(b"RIFF")
open(os.environ["FAKE_PID_FILE"], "w").write(str(os.getpid()))
time.sleep(60)
"""


class FixedTools:
    """Tool cache stand-in that hands out one prepared ffmpeg."""

    def __init__(self, path):
        self.path = Path(path)
        self.ensured = []

    def ensure(self, spec):
        self.ensured.append(spec.name)
        return ToolHandle(name=spec.name, path=self.path, version="6.1")


def process_gone(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    return False


class TestDecodedAudio:
    def test_sample_count_and_duration(self):
        audio = DecodedAudio(data=b"\x00\x00" * 16000)
        assert audio.num_samples == 16000
        assert audio.duration_s == 1.0

    def test_odd_length_rejected(self):
        with pytest.raises(ValueError, match="16-bit"):
            DecodedAudio(data=b"\x00\x00\x00")

    def test_non_canonical_format_rejected(self):
        with pytest.raises(ValueError, match="non-canonical"):
            DecodedAudio(data=b"", sample_rate=44100)

    def test_to_float32_scaling(self):
        pcm = np.array([0, 16384, -32768], dtype="<i2").tobytes()
        samples = DecodedAudio(data=pcm).to_float32()
        assert samples.dtype == np.float32
        assert samples.tolist() == [0.0, 0.5, -1.0]


class TestClassify:
    def test_existing_file_is_local(self, tmp_path):
        media = tmp_path / "talk.mp4"
        media.write_bytes(b"x")
        assert classify(str(media)) == LocalPath(media)

    @pytest.mark.parametrize("url", [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "http://example.com/podcast.mp3",
    ])
    def test_urls_are_remote(self, url):
        assert classify(url) == RemoteReference(url)

    @pytest.mark.parametrize("value", [
        "missing.wav",
        "",
        "ftp://example.com/file.mp3",
        "https://",
        "not a url at all",
    ])
    def test_neither_path_nor_url(self, value):
        for _ in range(2):
            with pytest.raises(SourceNotFound):
                classify(value)

    def test_directory_is_not_a_source(self, tmp_path):
        with pytest.raises(SourceNotFound):
            classify(str(tmp_path))


class FakeDownloader:
    def __init__(self):
        self.calls = []

    def fetch(self, ref, dest_dir):
        self.calls.append(ref.url)
        out = dest_dir / "clip-abc123.m4a"
        out.write_bytes(b"audio")
        return LocalPath(out)


class TestSourceResolver:
    @pytest.fixture
    def settings(self, tmp_path):
        return MediaSettings(work_dir=tmp_path / "work")

    def test_local_file_needs_no_download(self, tmp_path, settings):
        media = tmp_path / "a.wav"
        media.write_bytes(b"x")
        downloader = FakeDownloader()
        with SourceResolver(cache=None, settings=settings, downloader=downloader) as resolver:
            assert resolver.resolve(str(media)).path == media
        assert downloader.calls == []

    def test_download_removed_on_exit(self, settings):
        with SourceResolver(cache=None, settings=settings, downloader=FakeDownloader()) as resolver:
            local = resolver.resolve("https://example.com/watch?v=abc123")
            assert local.path.is_file()
        assert not local.path.exists()
        assert list(settings.work_dir.iterdir()) == []

    def test_download_removed_on_error(self, settings):
        with pytest.raises(KeyboardInterrupt):
            with SourceResolver(cache=None, settings=settings, downloader=FakeDownloader()) as resolver:
                local = resolver.resolve("https://example.com/watch?v=abc123")
                raise KeyboardInterrupt
        assert not local.path.exists()


@posix_only
class TestYtDlpDownloader:
    def test_fetch_returns_printed_path(self, tmp_path, make_script):
        script = make_script("yt-dlp", """\
import os, sys
template = sys.argv[sys.argv.index("-o") + 1]
out = os.path.join(os.path.dirname(template), "Some_Talk-abc123.webm")
open(out, "wb").write(b"audio")
print(out)
""")
        dest = tmp_path / "dl"
        dest.mkdir()
        downloader = YtDlpDownloader(ToolHandle("yt-dlp", script, "2024.08.06"))
        local = downloader.fetch(RemoteReference("https://example.com/v"), dest)
        assert local.path == dest / "Some_Talk-abc123.webm"

    def test_failure_reports_stderr(self, tmp_path, make_script):
        script = make_script("yt-dlp", """\
import sys
sys.stderr.write("ERROR: [youtube] abc123: Video unavailable\\n")
sys.exit(1)
""")
        downloader = YtDlpDownloader(ToolHandle("yt-dlp", script, "2024.08.06"))
        with pytest.raises(SourceDownloadFailed, match="Video unavailable"):
            downloader.fetch(RemoteReference("https://example.com/v"), tmp_path)

    def test_success_without_file(self, tmp_path, make_script):
        script = make_script("yt-dlp", "print('nothing')\n")
        dest = tmp_path / "dl"
        dest.mkdir()
        downloader = YtDlpDownloader(ToolHandle("yt-dlp", script, "2024.08.06"))
        with pytest.raises(SourceDownloadFailed, match="no file"):
            downloader.fetch(RemoteReference("https://example.com/v"), dest)


class TestNormalizer:
    @pytest.fixture
    def settings(self, tmp_path):
        return MediaSettings(work_dir=tmp_path / "work", normalize_timeout_s=20.0, kill_grace_s=1.0)

    def test_canonical_wav_passes_through_unchanged(self, tmp_path, settings):
        source = tmp_path / "speech.wav"
        pcm = write_wav(source, frames=12345)
        tools = FixedTools(tmp_path / "no-such-ffmpeg")
        audio = normalize(LocalPath(source), tools, settings)
        assert len(audio.data) == 12345 * 2
        assert audio.data == pcm
        # ffmpeg is neither looked up nor run for canonical input
        assert tools.ensured == []

    def test_read_canonical_wav_rejects_other_formats(self, tmp_path):
        stereo = tmp_path / "stereo.wav"
        write_wav(stereo, frames=100, rate=44100, channels=2)
        assert read_canonical_wav(stereo) is None
        junk = tmp_path / "junk.wav"
        junk.write_bytes(b"not a riff file")
        assert read_canonical_wav(junk) is None

    @posix_only
    def test_converts_with_ffmpeg(self, tmp_path, settings, make_script):
        tool = make_script("ffmpeg", CONVERTING_FFMPEG)
        source = tmp_path / "talk.mp3"
        source.write_bytes(b"ID3 not really mp3")
        audio = normalize(LocalPath(source), FixedTools(tool), settings)
        assert audio.num_samples == 8000
        assert list(settings.work_dir.iterdir()) == []

    @posix_only
    def test_wrong_output_format_is_decode_failure(self, tmp_path, settings, make_script):
        tool = make_script("ffmpeg", CONVERTING_FFMPEG.replace("16000", "44100"))
        source = tmp_path / "talk.mp3"
        source.write_bytes(b"x")
        with pytest.raises(UnsupportedFormat, match="16000 Hz"):
            normalize(LocalPath(source), FixedTools(tool), settings)

    @posix_only
    def test_unreadable_input(self, tmp_path, settings, make_script):
        tool = make_script("ffmpeg", """\
import sys
sys.stderr.write("talk.mp3: Invalid data found when processing input\\n")
sys.exit(1)
""")
        source = tmp_path / "talk.mp3"
        source.write_bytes(b"x")
        with pytest.raises(UnsupportedFormat, match="Invalid data"):
            normalize(LocalPath(source), FixedTools(tool), settings)

    @posix_only
    def test_missing_input_named_by_ffmpeg(self, tmp_path, settings, make_script):
        source = tmp_path / "talk.mp3"
        source.write_bytes(b"x")
        tool = make_script("ffmpeg", f"""\
import sys
sys.stderr.write("{source}: No such file or directory\\n")
sys.exit(1)
""")
        with pytest.raises(UnsupportedFormat, match="No such file"):
            normalize(LocalPath(source), FixedTools(tool), settings)

    @posix_only
    def test_output_side_errors_are_crashes(self, tmp_path, settings, make_script):
        tool = make_script("ffmpeg", """\
import sys
sys.stderr.write("/tmp/out/converted_audio.wav: No such file or directory\\n")
sys.stderr.write("Error initializing output stream 0:0: Invalid argument\\n")
sys.exit(1)
""")
        source = tmp_path / "talk.mp3"
        source.write_bytes(b"x")
        with pytest.raises(ToolCrashed) as excinfo:
            normalize(LocalPath(source), FixedTools(tool), settings)
        assert excinfo.value.returncode == 1

    @posix_only
    def test_nonzero_exit_is_crash(self, tmp_path, settings, make_script):
        tool = make_script("ffmpeg", """\
import sys
sys.stderr.write("Conversion failed!\\n")
sys.exit(187)
""")
        source = tmp_path / "talk.mp3"
        source.write_bytes(b"x")
        with pytest.raises(ToolCrashed) as excinfo:
            normalize(LocalPath(source), FixedTools(tool), settings)
        assert excinfo.value.returncode == 187

    @posix_only
    def test_killed_by_signal_is_crash(self, tmp_path, settings, make_script):
        tool = make_script("ffmpeg", "import os, signal\nos.kill(os.getpid(), signal.SIGKILL)\n")
        source = tmp_path / "talk.mp3"
        source.write_bytes(b"x")
        with pytest.raises(ToolCrashed, match="signal 9"):
            normalize(LocalPath(source), FixedTools(tool), settings)

    def test_missing_tool_is_crash(self, tmp_path, settings):
        source = tmp_path / "talk.mp3"
        source.write_bytes(b"x")
        with pytest.raises(ToolCrashed, match="could not start"):
            normalize(LocalPath(source), FixedTools(tmp_path / "no-such-ffmpeg"), settings)

    @posix_only
    def test_timeout_kills_and_cleans_up(self, tmp_path, make_script, monkeypatch):
        pid_file = tmp_path / "pid"
        monkeypatch.setenv("FAKE_PID_FILE", str(pid_file))
        tool = make_script("ffmpeg", HANGING_FFMPEG)
        source = tmp_path / "talk.mp3"
        source.write_bytes(b"x")
        settings = MediaSettings(work_dir=tmp_path / "work", normalize_timeout_s=1.0, kill_grace_s=1.0)

        with pytest.raises(NormalizeTimeout):
            normalize(LocalPath(source), FixedTools(tool), settings)

        assert list(settings.work_dir.iterdir()) == []
        assert process_gone(int(pid_file.read_text()))

    @posix_only
    def test_interrupt_kills_and_cleans_up(self, tmp_path, make_script, monkeypatch):
        pid_file = tmp_path / "pid"
        monkeypatch.setenv("FAKE_PID_FILE", str(pid_file))
        tool = make_script("ffmpeg", HANGING_FFMPEG)
        source = tmp_path / "talk.mp3"
        source.write_bytes(b"x")
        settings = MediaSettings(work_dir=tmp_path / "work", normalize_timeout_s=30.0, kill_grace_s=1.0)

        def interrupt(signum, frame):
            raise KeyboardInterrupt

        previous = signal.signal(signal.SIGALRM, interrupt)
        signal.setitimer(signal.ITIMER_REAL, 1.5)
        started = time.monotonic()
        try:
            with pytest.raises(KeyboardInterrupt):
                normalize(LocalPath(source), FixedTools(tool), settings)
        finally:
            signal.setitimer(signal.ITIMER_REAL, 0)
            signal.signal(signal.SIGALRM, previous)

        assert time.monotonic() - started < 10
        assert list(settings.work_dir.iterdir()) == []
        assert process_gone(int(pid_file.read_text()))


@posix_only
class TestManagedProcess:
    def test_child_terminated_when_block_raises(self):
        with pytest.raises(KeyboardInterrupt):
            with managed_process([sys.executable, "-c", "import time; time.sleep(60)"], grace_s=1.0) as proc:
                raise KeyboardInterrupt
        assert proc.poll() is not None

    def test_child_ignoring_terminate_is_killed(self):
        code = (
            "import signal, sys, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "print('ready', flush=True)\n"
            "time.sleep(60)\n"
        )
        with pytest.raises(RuntimeError):
            with managed_process([sys.executable, "-c", code], grace_s=0.5) as proc:
                proc.stdout.readline()
                raise RuntimeError("abort")
        assert proc.returncode == -signal.SIGKILL

    def test_run_bounded_captures_output(self):
        result = run_bounded(
            [sys.executable, "-c", "import sys; print('out'); sys.stderr.write('bad\\n'); sys.exit(2)"],
            timeout_s=20.0,
        )
        assert result.returncode == 2
        assert result.stdout.strip() == "out"
        assert result.last_error_line() == "bad"

    def test_run_bounded_timeout(self):
        started = time.monotonic()
        with pytest.raises(ProcessTimeout):
            run_bounded([sys.executable, "-c", "import time; time.sleep(60)"], timeout_s=0.5, grace_s=1.0)
        assert time.monotonic() - started < 10
