"""Tileable 3D noise volumes packed into 16-bit grayscale atlases."""

from .config import GenerationConfig
from .errors import NoiseAtlasError, ConfigurationError, GenerationError, EncodingError
from .generate import GenerationResult, GenerationSession, run_generation

__version__ = "1.0.0"

__all__ = [
    "GenerationConfig",
    "GenerationResult",
    "GenerationSession",
    "run_generation",
    "NoiseAtlasError",
    "ConfigurationError",
    "GenerationError",
    "EncodingError",
]
