"""Configuration management for cratecat."""

import os
import sys
from pathlib import Path
from typing import Any, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, model_validator


def get_config_dir() -> Path:
    """Get the config directory following XDG standard.

    Uses $XDG_CONFIG_HOME/cratecat if set, otherwise ~/.config/cratecat.
    """
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "cratecat"
    return Path.home() / ".config" / "cratecat"


def get_data_dir() -> Path:
    """Get the data directory following XDG standard.

    Uses $XDG_DATA_HOME/cratecat if set, otherwise ~/.local/share/cratecat.
    """
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data) / "cratecat"
    return Path.home() / ".local" / "share" / "cratecat"


DEFAULT_CONFIG_PATH = get_config_dir() / "config.yaml"
DEFAULT_DATA_DIR = get_data_dir()
DEFAULT_DB_PATH = DEFAULT_DATA_DIR / "catalog.db"
DEFAULT_LOG_PATH = DEFAULT_DATA_DIR / "cratecat.log"


def load_config(config_path: Path = DEFAULT_CONFIG_PATH) -> dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to the config file.

    Returns:
        Configuration dictionary (empty if file doesn't exist).
    """
    if not config_path.exists():
        return {}

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def save_config(config: dict, config_path: Path = DEFAULT_CONFIG_PATH) -> None:
    """Save configuration to YAML file.

    Args:
        config: Configuration dictionary.
        config_path: Path to the config file.
    """
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        yaml.dump(config, f, default_flow_style=False)


def get_gemini_api_key(config_path: Path = DEFAULT_CONFIG_PATH) -> Optional[str]:
    """Get Gemini API key from config or environment.

    Priority:
    1. GEMINI_API_KEY environment variable
    2. GOOGLE_API_KEY environment variable
    3. Config file

    Args:
        config_path: Path to the config file.

    Returns:
        API key or None if not configured.
    """
    for var in ("GEMINI_API_KEY", "GOOGLE_API_KEY"):
        env_key = os.environ.get(var)
        if env_key:
            return env_key

    config = load_config(config_path)
    return config.get("gemini_api_key")


def set_gemini_api_key(api_key: str, config_path: Path = DEFAULT_CONFIG_PATH) -> None:
    """Store Gemini API key in config file.

    Args:
        api_key: The API key to store.
        config_path: Path to the config file.
    """
    config = load_config(config_path)
    config["gemini_api_key"] = api_key
    save_config(config, config_path)


def get_spotify_credentials(config_path: Path = DEFAULT_CONFIG_PATH) -> tuple[Optional[str], Optional[str]]:
    """Get Spotify client id and secret.

    Environment variables (SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET) take
    priority over the config file's `spotify:` section.

    Returns:
        (client_id, client_secret); either may be None.
    """
    spotify = load_config(config_path).get("spotify") or {}
    client_id = os.environ.get("SPOTIFY_CLIENT_ID") or spotify.get("client_id")
    client_secret = os.environ.get("SPOTIFY_CLIENT_SECRET") or spotify.get("client_secret")
    return client_id, client_secret


def set_spotify_credentials(
    client_id: str, client_secret: str, config_path: Path = DEFAULT_CONFIG_PATH
) -> None:
    config = load_config(config_path)
    config["spotify"] = {"client_id": client_id, "client_secret": client_secret}
    save_config(config, config_path)


class PlannerSettings(BaseModel):
    """Tunable planner behaviour, stored under `planner:` in config.yaml."""

    duration_tolerance_seconds: int = Field(default=300, ge=0)
    default_duration_seconds: int = Field(default=3600, gt=0)
    default_tempo_min: float = Field(default=60, ge=0)
    default_tempo_max: float = Field(default=200, gt=0)
    llm_timeout_seconds: float = Field(default=30.0, gt=0)
    revision_drift_warning_seconds: int = Field(default=600, ge=0)
    min_instruction_length: int = Field(default=5, ge=1)
    max_instruction_length: int = Field(default=500, ge=1)
    max_prompt_tokens: int = Field(default=1500, gt=0)  # Budget for track lists in prompts
    gemini_model: str = "gemini-2.0-flash"

    @model_validator(mode="after")
    def _check_bounds(self) -> "PlannerSettings":
        if self.default_tempo_min > self.default_tempo_max:
            raise ValueError("default_tempo_min cannot be greater than default_tempo_max")
        if self.min_instruction_length > self.max_instruction_length:
            raise ValueError("min_instruction_length cannot be greater than max_instruction_length")
        return self

    def update(self, **changes: Any) -> "PlannerSettings":
        """Return a validated copy with changes applied.

        Raises:
            ValueError: If a change is out of range or names an unknown setting.
        """
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown planner settings: {', '.join(sorted(unknown))}")
        return type(self).model_validate({**self.model_dump(), **changes})


def get_planner_settings(config_path: Path = DEFAULT_CONFIG_PATH) -> PlannerSettings:
    config = load_config(config_path)
    return PlannerSettings.model_validate(config.get("planner") or {})


def set_planner_settings(settings: PlannerSettings, config_path: Path = DEFAULT_CONFIG_PATH) -> None:
    config = load_config(config_path)
    config["planner"] = settings.model_dump()
    save_config(config, config_path)


def setup_logging(level: str = "INFO", log_file: Optional[Path] = DEFAULT_LOG_PATH) -> None:
    """Configure loguru sinks.

    Args:
        level: Minimum level for the log file.
        log_file: Rotating log file, or None to skip file logging.
    """
    logger.remove()

    # Console only shows problems; rich handles normal CLI output
    console_level = "DEBUG" if level == "DEBUG" else "WARNING"
    logger.add(sys.stderr, level=console_level, format="<level>{level: <8}</level> | {message}")

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            rotation="10 MB",
            retention=5,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}",
        )

    logger.debug(f"Logging initialized (level={level}, file={log_file})")
