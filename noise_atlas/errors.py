"""
errors.py

Exception hierarchy. Every error carries the name of the stage that failed so a
caller can tell configuration-time faults apart from encoding-time faults.
"""


class NoiseAtlasError(Exception):
    """Base class for all noise atlas failures."""

    stage = "unknown"

    def __init__(self, reason: str, stage: str = None):
        if stage is not None:
            self.stage = stage
        self.reason = reason
        super().__init__(f"[{self.stage}] {reason}")


class ConfigurationError(NoiseAtlasError):
    """Malformed or pathological generation parameters."""

    stage = "config"


class GenerationError(NoiseAtlasError):
    """A pipeline stage (volume, verify, atlas, metadata) failed."""

    stage = "generate"


class EncodingError(NoiseAtlasError):
    """Binary encoding failed (PNG framing or the compressor)."""

    stage = "png"
