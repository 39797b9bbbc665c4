"""
Configuration loader for the Hard Subtitle Extractor.
Loads from config.yaml and allows CLI argument overrides.
"""

import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from pipeline.recognizer import DEFAULT_ENDPOINT, DEFAULT_MODEL

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


@dataclass
class SamplingConfig:
    step: float = 0.5
    seek_timeout: float = 15.0
    jpeg_quality: int = 3  # ffmpeg -q:v, 2 (best) .. 31 (worst)


@dataclass
class RegionConfig:
    x: float = 10.0
    y: float = 75.0
    width: float = 80.0
    height: float = 18.0


@dataclass
class RecognitionConfig:
    model: str = DEFAULT_MODEL
    api_key_env: str = "GEMINI_API_KEY"
    endpoint: str = DEFAULT_ENDPOINT
    language: str = "English"
    request_timeout: float = 120.0
    max_retries: int = 2
    batch_size: int = 10
    max_concurrent_batches: int = 1


@dataclass
class MergeConfig:
    tolerance: float = 0.3


@dataclass
class OutputConfig:
    format: str = "srt"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level application configuration."""
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    region: RegionConfig = field(default_factory=RegionConfig)
    recognition: RecognitionConfig = field(default_factory=RecognitionConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def update_from_args(self, args):
        """Override config values from CLI arguments."""
        if getattr(args, "step", None):
            self.sampling.step = args.step
        if getattr(args, "batch_size", None):
            self.recognition.batch_size = args.batch_size
        if getattr(args, "concurrency", None):
            self.recognition.max_concurrent_batches = args.concurrency
        if getattr(args, "language", None):
            self.recognition.language = args.language
        if getattr(args, "model", None):
            self.recognition.model = args.model
        if getattr(args, "tolerance", None) is not None:
            self.merge.tolerance = args.tolerance
        if getattr(args, "format", None):
            self.output.format = args.format


def _dict_to_dataclass(cls, data: dict):
    """Convert a dict to a dataclass, ignoring unknown keys."""
    if data is None:
        return cls()
    field_names = {f.name for f in cls.__dataclass_fields__.values()}
    unknown = set(data) - field_names
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")
    filtered = {k: v for k, v in data.items() if k in field_names}
    return cls(**filtered)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a YAML file.
    Falls back to defaults if file is missing.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.warning(f"Config file not found at {path}, using defaults.")
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    config = AppConfig(
        sampling=_dict_to_dataclass(SamplingConfig, raw.get("sampling")),
        region=_dict_to_dataclass(RegionConfig, raw.get("region")),
        recognition=_dict_to_dataclass(RecognitionConfig, raw.get("recognition")),
        merge=_dict_to_dataclass(MergeConfig, raw.get("merge")),
        output=_dict_to_dataclass(OutputConfig, raw.get("output")),
        logging=_dict_to_dataclass(LoggingConfig, raw.get("logging")),
    )

    logger.info(f"Configuration loaded from {path}")
    return config
