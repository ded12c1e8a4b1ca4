from __future__ import annotations

import logging
import re
import time
from pathlib import Path

from faster_whisper import WhisperModel, available_models

from asr.models import TranscriptionOptions
from asr.progress import NullProgress, ProgressSink
from common.errors import (
    EngineError,
    ModelIncompatible,
    ModelNotFound,
    TranscribeError,
    TranscriptionTimeout,
)
from common.schemas import Segment
from media.models import DecodedAudio

logger = logging.getLogger(__name__)

_REPO_ID = re.compile(r"^[\w][\w.-]*/[\w.-]+$")

_models: dict[tuple[str, str, str, bool], WhisperModel] = {}


def load_model(model_path: str, options: TranscriptionOptions | None = None) -> WhisperModel:
    """Load a faster-whisper model once per process for a given configuration."""
    options = options or TranscriptionOptions()
    key = (model_path, options.device, options.compute_type, options.flash_attention)
    model = _models.get(key)
    if model is not None:
        return model

    local = _check_model_reference(model_path)

    kwargs = {}
    if options.flash_attention:
        kwargs["flash_attention"] = True

    logger.info(
        "Loading faster-whisper model: %s (device=%s, compute_type=%s)",
        model_path, options.device, options.compute_type,
    )
    try:
        model = WhisperModel(
            model_path,
            device=options.device,
            compute_type=options.compute_type,
            **kwargs,
        )
    except Exception as exc:
        if local:
            raise ModelIncompatible(f"cannot load model: {exc}", subject=model_path) from exc
        raise ModelNotFound(f"cannot fetch model: {exc}", subject=model_path) from exc
    logger.info("Model loaded")
    _models[key] = model
    return model


def _check_model_reference(model_path: str) -> bool:
    """Validate ``model_path`` before loading; return True when it is a local directory."""
    path = Path(model_path).expanduser()
    if path.is_file():
        raise ModelIncompatible(
            "expected a CTranslate2 model directory, got a single file "
            "(ggml .bin models are not supported; use --download-model)",
            subject=model_path,
        )
    if path.is_dir():
        if not (path / "model.bin").is_file():
            raise ModelIncompatible("directory does not contain a CTranslate2 model.bin", subject=model_path)
        return True
    if model_path in available_models() or _REPO_ID.match(model_path):
        return False
    raise ModelNotFound(
        "not a model directory, a known model size, or a Hugging Face repo id", subject=model_path
    )


def transcribe(
    audio: DecodedAudio,
    model_path: str,
    options: TranscriptionOptions | None = None,
    progress: ProgressSink | None = None,
    model: WhisperModel | None = None,
) -> list[Segment]:
    """Run the whole buffer through the engine and collect segments in time order."""
    options = options or TranscriptionOptions()
    progress = progress or NullProgress()
    model = model or load_model(model_path, options)

    limit = options.time_limit(audio.duration_s)
    deadline = time.monotonic() + limit
    results: list[Segment] = []
    reported = 0.0
    last_start = 0

    try:
        segments, info = model.transcribe(
            audio.to_float32(),
            language=options.language,
            beam_size=options.beam_size,
            vad_filter=options.vad_filter,
            vad_parameters={"min_silence_duration_ms": 300} if options.vad_filter else None,
            initial_prompt=options.initial_prompt,
        )
        _check_deadline(deadline, limit, model_path)
        total = getattr(info, "duration", 0.0) or audio.duration_s
        logger.info("Transcribing %.1fs of audio (language=%s)", total, getattr(info, "language", None))

        for seg in segments:
            _check_deadline(deadline, limit, model_path)

            start_ms = max(int(round(seg.start * 1000)), last_start)
            end_ms = max(int(round(seg.end * 1000)), start_ms)
            last_start = start_ms
            text = seg.text.strip()
            if text:
                results.append(Segment(start_ms=start_ms, end_ms=end_ms, text=text))

            if total > 0:
                fraction = min(1.0, max(0.0, seg.end / total))
                if fraction > reported:
                    reported = fraction
                    progress.update(fraction)
        _check_deadline(deadline, limit, model_path)
    except TranscribeError:
        raise
    except Exception as exc:
        raise EngineError(type(exc).__name__, str(exc), subject=model_path) from exc

    if reported < 1.0:
        progress.update(1.0)
    logger.info("Transcribed %d segments", len(results))
    return results


def _check_deadline(deadline: float, limit: float, model_path: str) -> None:
    if time.monotonic() > deadline:
        raise TranscriptionTimeout(f"inference exceeded {limit:.0f}s", subject=model_path)
