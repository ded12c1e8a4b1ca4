from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler

from asr.model_store import download_model
from asr.progress import NullProgress, RichProgressSink
from cli.pipeline import RunConfig, run
from common.config import ASRSettings, OutputSettings
from common.errors import TranscriberError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_INTERRUPTED = 130

console = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="audio-transcriber",
        description="Transcribe an audio/video file or online video with Whisper.",
    )
    ap.add_argument("input", nargs="?", help="path to a media file, or an http(s) URL")
    ap.add_argument("model_path", nargs="?", default=None, help="model directory, size name or HF repo id")
    ap.add_argument("--model-path", dest="model_path_opt", default=None, help="same as the positional model path")
    ap.add_argument("--device", choices=["auto", "cuda", "cpu"], default=None, help="inference device")
    ap.add_argument("--compute-type", default=None, help="CTranslate2 compute type, e.g. float16, int8")
    ap.add_argument("--fa", action="store_true", help="use flash attention (CUDA only)")
    ap.add_argument("--language", default=None, help="force language code, e.g. en, de")
    ap.add_argument("--beam-size", type=int, default=None, help="beam size")
    ap.add_argument("--initial-prompt", default=None, help="text to condition the first window on")
    ap.add_argument("--no-vad", action="store_true", help="disable voice activity filtering")
    ap.add_argument("--timeout", type=float, default=None, help="fixed inference time limit in seconds (default scales with audio length)")
    ap.add_argument("--output-dir", type=Path, default=None, help="where to write outputs (default: cwd)")
    ap.add_argument("--no-progress", action="store_true", help="hide the progress bar")
    ap.add_argument("--download-model", metavar="NAME", default=None, help="download a model and exit")
    ap.add_argument("--models-dir", type=Path, default=Path("models"), help="target for --download-model")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return ap


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose)],
    )


def config_from_args(args: argparse.Namespace) -> RunConfig:
    overrides = {
        "model_path": args.model_path_opt or args.model_path,
        "device": args.device,
        "compute_type": args.compute_type,
        "language": args.language,
        "beam_size": args.beam_size,
        "initial_prompt": args.initial_prompt,
        "timeout_s": args.timeout,
        "flash_attention": True if args.fa else None,
        "vad_filter": False if args.no_vad else None,
    }
    if args.timeout is not None:
        overrides["timeout_factor"] = 0.0
    asr = ASRSettings(**{k: v for k, v in overrides.items() if v is not None})

    config = RunConfig(asr=asr)
    if args.output_dir is not None:
        config.output = OutputSettings(output_dir=args.output_dir)
    return config


def _interrupt(signum, frame):
    raise KeyboardInterrupt


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    configure_logging(args.verbose)

    if args.download_model:
        try:
            path = download_model(args.download_model, args.models_dir)
        except TranscriberError as exc:
            console.print(f"[red]{exc.describe()}[/red]")
            return exc.exit_code
        console.print(f"Model saved to {path}")
        return EXIT_OK

    if not args.input:
        ap.error("input is required unless --download-model is given")
    if args.timeout is not None and args.timeout <= 0:
        ap.error("--timeout must be positive")

    # Route SIGTERM through the same cleanup path as Ctrl-C
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _interrupt)

    config = config_from_args(args)
    progress = NullProgress() if args.no_progress else RichProgressSink(console=console)

    try:
        if isinstance(progress, RichProgressSink):
            with progress:
                outputs = run(args.input, config, progress=progress)
        else:
            outputs = run(args.input, config, progress=progress)
    except TranscriberError as exc:
        logger.debug("Pipeline failure", exc_info=True)
        console.print(f"[red]{exc.describe()}[/red]")
        return exc.exit_code
    except KeyboardInterrupt:
        console.print("[yellow]interrupted[/yellow]")
        return EXIT_INTERRUPTED
    except Exception:
        logger.exception("Unexpected error")
        return EXIT_UNEXPECTED

    console.print(f"Raw output written to {outputs.raw_text}.")
    console.print(f"Timestamped output written to {outputs.timestamps} and {outputs.srt}.")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
