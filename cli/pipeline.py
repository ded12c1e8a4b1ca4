from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from asr.models import TranscriptionOptions
from asr.progress import ProgressSink
from asr.transcriber import load_model, transcribe
from common.config import ASRSettings, MediaSettings, OutputSettings, ToolSettings
from common.schemas import OutputPaths
from media.normalizer import normalize
from media.resolver import SourceResolver, classify
from subtitles.writer import write_outputs
from toolchain.locator import ToolCache

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    tools: ToolSettings = field(default_factory=ToolSettings)
    media: MediaSettings = field(default_factory=MediaSettings)
    asr: ASRSettings = field(default_factory=ASRSettings)
    output: OutputSettings = field(default_factory=OutputSettings)


def run(
    input_value: str,
    config: RunConfig,
    progress: Optional[ProgressSink] = None,
    cache: Optional[ToolCache] = None,
) -> OutputPaths:
    """Resolve, normalize, transcribe and write outputs for one input."""
    cache = cache or ToolCache(config.tools)
    options = TranscriptionOptions.from_settings(config.asr)

    # Check the input, then the model, before any download or conversion
    media_source = classify(input_value)
    model = load_model(config.asr.model_path, options)

    with SourceResolver(cache, config.media) as resolver:
        source = resolver.resolve(media_source)
        audio = normalize(source, cache, config.media)
        base_name = Path(source.path).stem

    segments = transcribe(audio, config.asr.model_path, options, progress=progress, model=model)
    del audio

    return write_outputs(segments, base_name, config.output.output_dir)
