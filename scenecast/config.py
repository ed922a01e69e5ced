"""
SceneCast Configuration Module

Handles loading configuration from:
1. .env file
2. Environment variables
3. Default values

Usage:
    from scenecast.config import config, Settings

    model = config.get("SC_MODEL", "gpt-4o")
    settings = Settings.from_env()
"""

__all__ = ["config", "Config", "Settings", "DEFAULTS", "DEFAULT_MODELS", "CONFIG_CATEGORIES"]

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULTS = {
    # AI / LLM
    "SC_LLM_PROVIDER": "openai",       # openai, ollama
    "SC_MODEL": "",                    # empty = provider default
    "SC_OPENAI_API_KEY": "",
    "SC_OLLAMA_URL": "http://localhost:11434",
    "SC_LLM_TIMEOUT": "30",
    "SC_MAX_TOKENS": "150",
    "SC_TEMPERATURE": "0.7",

    # Rate limiting
    "SC_TOKENS_PER_MINUTE": "30000",
    "SC_COOLDOWN_THRESHOLD": "0.8",    # fraction of the budget that triggers cooldown
    "SC_RESET_INTERVAL_MS": "60000",
    "SC_MAX_RETRIES": "3",
    "SC_BACKOFF_FLOOR_MS": "1000",
    "SC_BACKOFF_CEILING_MS": "60000",
    "SC_MIN_SPACING_MS": "1000",
    "SC_DESCRIBE_WITHOUT_FRAME": "false",

    # Sampling
    "SC_COMMENTARY_INTERVAL_MS": "10000",
    "SC_DETECTION_INTERVAL_MS": "200",

    # Detection
    "SC_MIN_SCORE": "0.3",
    "SC_MAX_RESULTS": "20",
    "SC_YOLO_MODEL": "yolov8n.pt",
    "SC_FRAME_SCALE": "0.5",
    "SC_JPEG_QUALITY": "70",

    # Heuristics
    "SC_MOTION_WINDOW_MS": "2000",
    "SC_MOTION_THRESHOLD_PX": "10",
    "SC_SUDDEN_SPEED_PX": "100",       # pixels per second
    "SC_PROXIMITY_PX": "150",
    "SC_MATCH_RADIUS_PX": "75",

    # Web API
    "SC_WEB_HOST": "0.0.0.0",
    "SC_WEB_PORT": "8080",

    # Logging
    "SC_LOG_LEVEL": "INFO",
    "SC_LOG_FILE": "",
}

# Configuration categories for `scenecast config`
CONFIG_CATEGORIES = {
    "AI / LLM": [
        ("SC_LLM_PROVIDER", "LLM Provider", "Description provider: openai, ollama"),
        ("SC_MODEL", "Model", "Vision-capable chat model (empty = provider default)"),
        ("SC_OPENAI_API_KEY", "OpenAI API Key", "Empty key = template descriptions only"),
        ("SC_OLLAMA_URL", "Ollama URL", "Ollama server URL"),
        ("SC_LLM_TIMEOUT", "Timeout (s)", "Per-request timeout"),
    ],
    "Rate Limiting": [
        ("SC_TOKENS_PER_MINUTE", "Token Budget", "Tokens per window"),
        ("SC_COOLDOWN_THRESHOLD", "Cooldown Threshold", "Budget fraction that pauses dispatch"),
        ("SC_MAX_RETRIES", "Max Retries", "Retries for rate-limited requests"),
        ("SC_BACKOFF_FLOOR_MS", "Backoff Floor (ms)", "Initial backoff"),
        ("SC_BACKOFF_CEILING_MS", "Backoff Ceiling (ms)", "Maximum backoff"),
        ("SC_MIN_SPACING_MS", "Min Spacing (ms)", "Minimum gap between requests"),
    ],
    "Sampling": [
        ("SC_COMMENTARY_INTERVAL_MS", "Commentary Interval (ms)", "Gap between description requests"),
        ("SC_DETECTION_INTERVAL_MS", "Detection Interval (ms)", "Gap between detector runs"),
    ],
    "Detection": [
        ("SC_MIN_SCORE", "Min Score", "Minimum detection confidence"),
        ("SC_YOLO_MODEL", "YOLO Model", "Ultralytics model file"),
    ],
    "Web API": [
        ("SC_WEB_HOST", "Host", "Web server host"),
        ("SC_WEB_PORT", "Port", "Web server port"),
    ],
    "Logging": [
        ("SC_LOG_LEVEL", "Log Level", "Logging level: DEBUG, INFO, WARNING, ERROR"),
        ("SC_LOG_FILE", "Log File", "Path to log file (empty = console only)"),
    ],
}

# Default models per provider
DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "ollama": "llava:7b",
}

# Aliases read from the environment when the SC_ key is unset
ENV_ALIASES = {
    "SC_OPENAI_API_KEY": "OPENAI_API_KEY",
}


class Config:
    """Configuration manager for SceneCast"""

    def __init__(self, env_file: Optional[Path] = None):
        self._config: Dict[str, str] = {}
        self._env_file: Optional[Path] = env_file
        self._load()

    def _find_env_file(self) -> Optional[Path]:
        """Find .env file in current directory or parent directories"""
        current = Path.cwd()

        for _ in range(5):
            env_path = current / ".env"
            if env_path.exists():
                return env_path
            current = current.parent

        return None

    def _load(self):
        """Load configuration from .env file and environment"""
        self._config = DEFAULTS.copy()

        env_file = self._env_file or self._find_env_file()
        if env_file and env_file.exists():
            self._env_file = env_file
            self._load_env_file(env_file)

        for key, alias in ENV_ALIASES.items():
            alias_val = os.environ.get(alias)
            if alias_val and not self._config.get(key):
                self._config[key] = alias_val

        for key in DEFAULTS.keys():
            env_val = os.environ.get(key)
            if env_val is not None:
                self._config[key] = env_val

    def _load_env_file(self, path: Path):
        """Load configuration from .env file"""
        aliases = {alias: key for key, alias in ENV_ALIASES.items()}
        try:
            with open(path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#"):
                        continue
                    if "=" in line:
                        key, _, value = line.partition("=")
                        key = key.strip()
                        value = value.strip().strip('"').strip("'")
                        if key in DEFAULTS:
                            self._config[key] = value
                        elif key in aliases and not self._config.get(aliases[key]):
                            self._config[aliases[key]] = value
        except OSError as e:
            logger.warning(f"Could not read {path}: {e}")

    def get(self, key: str, default: Any = None) -> str:
        """Get configuration value"""
        return self._config.get(key, default if default is not None else DEFAULTS.get(key, ""))

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get configuration value as boolean"""
        val = self.get(key, str(default))
        return val.lower() in ("true", "1", "yes", "on")

    def get_int(self, key: str, default: int = 0) -> int:
        """Get configuration value as integer"""
        val = self.get(key, str(default))
        try:
            return int(val)
        except ValueError:
            raise ConfigurationError(f"{key} must be an integer, got {val!r}")

    def get_float(self, key: str, default: float = 0.0) -> float:
        """Get configuration value as float"""
        val = self.get(key, str(default))
        try:
            return float(val)
        except ValueError:
            raise ConfigurationError(f"{key} must be a number, got {val!r}")

    def set(self, key: str, value: str):
        """Set configuration value"""
        self._config[key] = str(value)

    @property
    def env_file(self) -> Optional[Path]:
        return self._env_file

    def to_dict(self) -> Dict[str, str]:
        """Get all configuration as dictionary"""
        return self._config.copy()

    def reload(self):
        """Reload configuration from files"""
        self._load()


# Global config instance
config = Config()


@dataclass
class Settings:
    """Typed settings consumed by the analysis core.

    Durations are kept in milliseconds, mirroring the configuration keys.
    """
    provider: str = "openai"
    model: str = ""
    api_key: str = ""
    ollama_url: str = "http://localhost:11434"
    timeout: float = 30.0
    max_tokens: int = 150
    temperature: float = 0.7

    tokens_per_minute: int = 30000
    cooldown_threshold: float = 0.8
    reset_interval_ms: int = 60000
    max_retries: int = 3
    backoff_floor_ms: int = 1000
    backoff_ceiling_ms: int = 60000
    min_spacing_ms: int = 1000
    describe_without_frame: bool = False

    commentary_interval_ms: int = 10000
    detection_interval_ms: int = 200

    min_score: float = 0.3
    max_results: int = 20
    yolo_model: str = "yolov8n.pt"
    frame_scale: float = 0.5
    jpeg_quality: int = 70

    motion_window_ms: int = 2000
    motion_threshold_px: float = 10.0
    sudden_speed_px: float = 100.0
    proximity_px: float = 150.0
    match_radius_px: float = 75.0

    web_host: str = "0.0.0.0"
    web_port: int = 8080
    log_level: str = "INFO"
    log_file: str = ""

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.provider not in ("openai", "ollama"):
            raise ConfigurationError(f"Unknown LLM provider: {self.provider}")
        if self.tokens_per_minute <= 0:
            raise ConfigurationError("tokens_per_minute must be positive")
        if not 0 < self.cooldown_threshold <= 1:
            raise ConfigurationError("cooldown_threshold must be in (0, 1]")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries cannot be negative")
        if self.backoff_floor_ms <= 0 or self.backoff_ceiling_ms < self.backoff_floor_ms:
            raise ConfigurationError("backoff floor must be positive and not above the ceiling")
        if self.reset_interval_ms <= 0:
            raise ConfigurationError("reset_interval_ms must be positive")
        if self.min_spacing_ms < 0:
            raise ConfigurationError("min_spacing_ms cannot be negative")

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.provider]

    @property
    def has_provider(self) -> bool:
        """Whether descriptions can be requested from a model at all."""
        if self.provider == "ollama":
            return bool(self.ollama_url)
        return bool(self.api_key)

    @classmethod
    def from_env(cls, cfg: Optional[Config] = None) -> "Settings":
        """Load settings from environment/.env"""
        cfg = cfg or config
        return cls(
            provider=cfg.get("SC_LLM_PROVIDER").strip().lower(),
            model=cfg.get("SC_MODEL"),
            api_key=cfg.get("SC_OPENAI_API_KEY"),
            ollama_url=cfg.get("SC_OLLAMA_URL"),
            timeout=cfg.get_float("SC_LLM_TIMEOUT"),
            max_tokens=cfg.get_int("SC_MAX_TOKENS"),
            temperature=cfg.get_float("SC_TEMPERATURE"),
            tokens_per_minute=cfg.get_int("SC_TOKENS_PER_MINUTE"),
            cooldown_threshold=cfg.get_float("SC_COOLDOWN_THRESHOLD"),
            reset_interval_ms=cfg.get_int("SC_RESET_INTERVAL_MS"),
            max_retries=cfg.get_int("SC_MAX_RETRIES"),
            backoff_floor_ms=cfg.get_int("SC_BACKOFF_FLOOR_MS"),
            backoff_ceiling_ms=cfg.get_int("SC_BACKOFF_CEILING_MS"),
            min_spacing_ms=cfg.get_int("SC_MIN_SPACING_MS"),
            describe_without_frame=cfg.get_bool("SC_DESCRIBE_WITHOUT_FRAME"),
            commentary_interval_ms=cfg.get_int("SC_COMMENTARY_INTERVAL_MS"),
            detection_interval_ms=cfg.get_int("SC_DETECTION_INTERVAL_MS"),
            min_score=cfg.get_float("SC_MIN_SCORE"),
            max_results=cfg.get_int("SC_MAX_RESULTS"),
            yolo_model=cfg.get("SC_YOLO_MODEL"),
            frame_scale=cfg.get_float("SC_FRAME_SCALE"),
            jpeg_quality=cfg.get_int("SC_JPEG_QUALITY"),
            motion_window_ms=cfg.get_int("SC_MOTION_WINDOW_MS"),
            motion_threshold_px=cfg.get_float("SC_MOTION_THRESHOLD_PX"),
            sudden_speed_px=cfg.get_float("SC_SUDDEN_SPEED_PX"),
            proximity_px=cfg.get_float("SC_PROXIMITY_PX"),
            match_radius_px=cfg.get_float("SC_MATCH_RADIUS_PX"),
            web_host=cfg.get("SC_WEB_HOST"),
            web_port=cfg.get_int("SC_WEB_PORT"),
            log_level=cfg.get("SC_LOG_LEVEL"),
            log_file=cfg.get("SC_LOG_FILE"),
        )
