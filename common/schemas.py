from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class Segment(BaseModel):
    """A timed span of recognized speech, in milliseconds from the start of the audio."""

    start_ms: int = Field(ge=0)
    end_ms: int = Field(ge=0)
    text: str

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_order(self) -> "Segment":
        if self.end_ms < self.start_ms:
            raise ValueError(f"end_ms ({self.end_ms}) precedes start_ms ({self.start_ms})")
        return self


class OutputPaths(BaseModel):
    raw_text: str
    srt: str
    timestamps: str
