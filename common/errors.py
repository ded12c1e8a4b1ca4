"""Error taxonomy shared by every pipeline stage.

Each top-level category carries the stage name printed by the CLI and the
process exit code for that failure class. Concrete failures are subclasses so
callers can catch either the category or the exact kind.
"""

from __future__ import annotations

from typing import Optional


class TranscriberError(Exception):
    stage = "pipeline"
    exit_code = 1

    def __init__(self, message: str, subject: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.subject = subject

    def describe(self) -> str:
        if self.subject:
            return f"{self.stage} failed for {self.subject}: {self.message}"
        return f"{self.stage} failed: {self.message}"


# --- Binary Locator ---

class ToolError(TranscriberError):
    stage = "tool"
    exit_code = 2


class ToolDownloadFailed(ToolError):
    pass


class UnsupportedPlatform(ToolError):
    pass


class ExtractionFailed(ToolError):
    pass


# --- Source Resolver ---

class ResolveError(TranscriberError):
    stage = "resolve"
    exit_code = 3


class SourceNotFound(ResolveError):
    pass


class SourceDownloadFailed(ResolveError):
    pass


# --- Audio Normalizer ---

class NormalizeError(TranscriberError):
    stage = "decode"
    exit_code = 4


class UnsupportedFormat(NormalizeError):
    pass


class ToolCrashed(NormalizeError):
    def __init__(self, message: str, subject: Optional[str] = None, returncode: Optional[int] = None):
        super().__init__(message, subject)
        self.returncode = returncode


class NormalizeTimeout(NormalizeError):
    pass


# --- Transcription Orchestrator ---

class TranscribeError(TranscriberError):
    stage = "transcription"
    exit_code = 5


class ModelNotFound(TranscribeError):
    pass


class ModelIncompatible(TranscribeError):
    pass


class EngineError(TranscribeError):
    def __init__(self, code: str, message: str, subject: Optional[str] = None):
        super().__init__(f"[{code}] {message}", subject)
        self.code = code


class TranscriptionTimeout(TranscribeError):
    pass


# --- Output Writer ---

class OutputError(TranscriberError):
    stage = "write"
    exit_code = 6


class WriteFailed(OutputError):
    pass
