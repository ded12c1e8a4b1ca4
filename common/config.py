from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


def _default_cache_dir() -> Path:
    return Path.home() / ".cache" / "audio-transcriber"


class ToolSettings(BaseSettings):
    cache_dir: Path = _default_cache_dir()
    download_timeout_s: float = 300.0
    download_retries: int = 1
    probe_timeout_s: float = 15.0
    search_system_path: bool = True

    model_config = {"env_prefix": "TOOLS_"}


class MediaSettings(BaseSettings):
    work_dir: Optional[Path] = None
    normalize_timeout_s: float = 1800.0
    download_timeout_s: float = 1800.0
    kill_grace_s: float = 5.0

    model_config = {"env_prefix": "MEDIA_"}


class ASRSettings(BaseSettings):
    model_path: str = "large-v3-turbo"
    device: str = "auto"
    compute_type: str = "auto"
    flash_attention: bool = False
    language: Optional[str] = None
    beam_size: int = 5
    vad_filter: bool = True
    initial_prompt: Optional[str] = None
    # inference limit: max(timeout_s, timeout_factor * audio duration)
    timeout_s: float = Field(default=3600.0, gt=0)
    timeout_factor: float = Field(default=10.0, ge=0)

    model_config = {"env_prefix": "ASR_"}


class OutputSettings(BaseSettings):
    output_dir: Path = Path(".")

    model_config = {"env_prefix": "OUTPUT_"}
