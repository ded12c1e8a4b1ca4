from __future__ import annotations

import logging
from pathlib import Path

import faster_whisper

from common.errors import ModelNotFound

logger = logging.getLogger(__name__)


def download_model(name: str, models_dir: Path) -> Path:
    """Fetch a converted faster-whisper model into ``models_dir/<name>``.

    ``name`` is a size such as ``small`` or ``large-v3-turbo``, or a Hugging
    Face repo id. Returns the directory to pass as the model path.
    """
    output_dir = Path(models_dir) / name.replace("/", "--")
    logger.info("Downloading model %s to %s", name, output_dir)
    try:
        path = faster_whisper.download_model(name, output_dir=str(output_dir))
    except Exception as exc:
        raise ModelNotFound(f"download failed: {exc}", subject=name) from exc
    logger.info("Model %s ready at %s", name, path)
    return Path(path)
