"""
Configuration loader for Timewarp.
Loads from config.yaml and allows CLI argument overrides.
"""

import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


@dataclass
class VADConfig:
    model_path: Optional[str] = None  # None = download to the torch hub cache
    model_url: str = (
        "https://github.com/snakers4/silero-vad/raw/master/"
        "src/silero_vad/data/silero_vad.onnx"
    )
    threads: int = 0  # 0 = onnxruntime default


@dataclass
class SpeedConfig:
    threshold: float = 0.5
    loud_speed: float = 1.2
    silent_speed: float = 4.0


@dataclass
class ToolsConfig:
    directory: Optional[str] = None  # None = look up on PATH
    suffix: str = ""                 # e.g. ".exe"
    video_codec: str = "libx264"
    preset: str = "veryfast"
    audio_bitrate: int = 192
    audio_format: str = "wav"


@dataclass
class ThreadingConfig:
    max_workers: int = 6


@dataclass
class OutputConfig:
    suffix: str = "_warped"
    keep_temp: bool = False


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level application configuration."""
    vad: VADConfig = field(default_factory=VADConfig)
    speed: SpeedConfig = field(default_factory=SpeedConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    threading: ThreadingConfig = field(default_factory=ThreadingConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def update_from_args(self, args):
        """Override config values from CLI arguments."""
        if getattr(args, "threshold", None) is not None:
            self.speed.threshold = args.threshold
        if getattr(args, "loud_speed", None) is not None:
            self.speed.loud_speed = args.loud_speed
        if getattr(args, "silent_speed", None) is not None:
            self.speed.silent_speed = args.silent_speed
        if getattr(args, "model", None):
            self.vad.model_path = str(args.model)
        if getattr(args, "keep_temp", False):
            self.output.keep_temp = True


def _dict_to_dataclass(cls, data: dict):
    """Convert a dict to a dataclass, ignoring unknown keys."""
    if data is None:
        return cls()
    field_names = {f.name for f in cls.__dataclass_fields__.values()}
    unknown = set(data) - field_names
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
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
        vad=_dict_to_dataclass(VADConfig, raw.get("vad")),
        speed=_dict_to_dataclass(SpeedConfig, raw.get("speed")),
        tools=_dict_to_dataclass(ToolsConfig, raw.get("tools")),
        threading=_dict_to_dataclass(ThreadingConfig, raw.get("threading")),
        output=_dict_to_dataclass(OutputConfig, raw.get("output")),
        logging=_dict_to_dataclass(LoggingConfig, raw.get("logging")),
    )

    logger.info(f"Configuration loaded from {path}")
    return config
