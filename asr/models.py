"""Internal models for the transcription stage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from common.config import ASRSettings


@dataclass(frozen=True)
class TranscriptionOptions:
    device: str = "auto"
    compute_type: str = "auto"
    flash_attention: bool = False
    language: Optional[str] = None
    beam_size: int = 5
    vad_filter: bool = True
    initial_prompt: Optional[str] = None
    timeout_s: float = 3600.0
    timeout_factor: float = 10.0

    @classmethod
    def from_settings(cls, settings: ASRSettings) -> "TranscriptionOptions":
        return cls(
            device=settings.device,
            compute_type=settings.compute_type,
            flash_attention=settings.flash_attention,
            language=settings.language,
            beam_size=settings.beam_size,
            vad_filter=settings.vad_filter,
            initial_prompt=settings.initial_prompt,
            timeout_s=settings.timeout_s,
            timeout_factor=settings.timeout_factor,
        )

    def time_limit(self, duration_s: float) -> float:
        """Seconds of inference allowed for ``duration_s`` seconds of audio."""
        return max(self.timeout_s, self.timeout_factor * duration_s)
