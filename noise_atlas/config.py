# config.py

import os
import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Dict, Any, Optional

from dotenv import load_dotenv
from jsonschema import validate, ValidationError, SchemaError
from rich.logging import RichHandler

from .errors import ConfigurationError
from .singleton import SingletonMeta

logger = logging.getLogger(__name__)

SCHEMA_FILE = Path(__file__).with_name("config.schema.json")

# snake_case field -> camelCase key used in JSON records
_CAMEL_KEYS = {
    "warp_strength": "warpStrength",
}


def setup_logging(verbose: bool = False, level: Optional[str] = None) -> logging.Logger:
    """
    Sets up logging configuration with RichHandler.
    If verbose is True, set log level to DEBUG, else INFO (or `level` if given).
    """
    if verbose:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)]
    )
    logging.getLogger().setLevel(log_level)
    return logging.getLogger("noise_atlas")


@dataclass(frozen=True)
class GenerationConfig:
    resolution: int = 64
    seed: int = 42
    frequency: int = 4
    octaves: int = 4
    lacunarity: float = 2.0
    gain: float = 0.5
    warp_strength: float = 0.0
    gamma: float = 1.0
    brightness: float = 0.0
    contrast: float = 1.0
    threshold: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Record form with the camelCase keys used by the JSON exports."""
        return {_CAMEL_KEYS.get(k, k): v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationConfig":
        """Build a config from camelCase or snake_case keys; missing keys keep defaults."""
        reverse = {v: k for k, v in _CAMEL_KEYS.items()}
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = reverse.get(key, key)
            if name not in known:
                raise ConfigurationError(f"Unknown configuration key: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    def replace(self, **changes) -> "GenerationConfig":
        data = asdict(self)
        data.update({k: v for k, v in changes.items() if v is not None})
        return GenerationConfig(**data)


def load_schema(schema_file: Path = SCHEMA_FILE) -> Dict[str, Any]:
    try:
        with open(schema_file, "r") as f:
            schema = json.load(f)
        logger.debug(f"Successfully loaded JSON schema from {schema_file}")
        return schema
    except FileNotFoundError:
        logger.error(f"Schema file not found: {schema_file}")
        raise
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON format in schema file {schema_file}: {e}")
        raise


def validate_config(config: GenerationConfig, schema_file: Path = SCHEMA_FILE) -> GenerationConfig:
    """
    Range-check a config against the JSON schema (resolution 16-256, frequency 1-32,
    octaves 1-8, ...). The generation core itself does not enforce these bounds.
    """
    schema = load_schema(schema_file)
    try:
        validate(instance=config.to_dict(), schema=schema)
        logger.debug("Configuration validation successful.")
    except ValidationError as ve:
        path = ".".join(str(p) for p in ve.absolute_path) or "config"
        logger.error(f"Configuration validation error: {path}: {ve.message}")
        raise ConfigurationError(f"{path}: {ve.message}") from ve
    except SchemaError as se:
        logger.error(f"Invalid JSON Schema: {se.message}")
        raise
    return config


def load_config(config_file: str, schema_file: Path = SCHEMA_FILE) -> GenerationConfig:
    """Read a JSON config file, fill in defaults for missing keys and validate it."""
    try:
        with open(config_file, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.error(f"Config file not found: {config_file}")
        raise ConfigurationError(f"Config file not found: {config_file}")
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON format in config file {config_file}: {e}")
        raise ConfigurationError(f"Invalid JSON in {config_file}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_file} must contain a JSON object")

    try:
        config = GenerationConfig.from_dict(data)
    except TypeError as e:
        raise ConfigurationError(str(e))
    logger.info(f"Loaded configuration from {config_file}")
    return validate_config(config, schema_file)


class Settings(metaclass=SingletonMeta):
    """
    Process-wide settings read from the environment (and a .env file if present).
    Only the CLI and the export layer read these; the generation core never does.
    """

    def __init__(self):
        self.settings = {}
        self.load_settings()

    def load_settings(self):
        load_dotenv()

        try:
            self.settings = {
                'output_dir': os.getenv('NOISE_ATLAS_OUTPUT_DIR', 'output'),
                'compression_level': int(os.getenv('NOISE_ATLAS_COMPRESSION_LEVEL', '9')),
                'log_level': os.getenv('NOISE_ATLAS_LOG_LEVEL', 'INFO'),
                'ray_address': os.getenv('RAY_ADDRESS') or None,
            }
        except ValueError as ve:
            logger.error(f"Type conversion error: {ve}")
            raise ConfigurationError(f"Invalid environment setting: {ve}")

        level = self.settings['compression_level']
        if not -1 <= level <= 9:
            raise ConfigurationError(f"NOISE_ATLAS_COMPRESSION_LEVEL must be in [-1, 9], got {level}")
        logger.debug("Successfully loaded settings from environment variables.")

    def get_setting(self, key: str):
        return self.settings.get(key)

    def set_setting(self, key: str, value):
        self.settings[key] = value
