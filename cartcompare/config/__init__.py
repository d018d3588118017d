"""Configuration module."""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..errors import ConfigurationError

# (environment variable, config section, key, converter)
ENV_OVERRIDES = [
    ("GOOGLE_SEARCH_API_KEY", "search", "api_key", str),
    ("GOOGLE_SEARCH_ENGINE_ID", "search", "engine_id", str),
    ("ANTHROPIC_API_KEY", "llm", "api_key", str),
    ("LLM_MODEL", "llm", "model", str),
    ("REDIS_URL", "cache", "redis_url", str),
    ("SCREENSHOT_DIR", "popup", "screenshot_dir", str),
    ("LOG_LEVEL", "logging", "level", str),
    ("MAX_RESULTS", "comparison", "max_results", int),
    ("MAX_ATTEMPTS", "comparison", "max_attempts", int),
]

REQUIRED_CREDENTIALS = [
    ("search", "api_key", "GOOGLE_SEARCH_API_KEY"),
    ("search", "engine_id", "GOOGLE_SEARCH_ENGINE_ID"),
    ("llm", "api_key", "ANTHROPIC_API_KEY"),
]


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses default config/settings.yaml

    Returns:
        Configuration dictionary
    """
    if config_path is None:
        config_dir = Path(__file__).parent
        config_path = config_dir / "settings.yaml"

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    # Override with environment variables if present
    for env_name, section, key, convert in ENV_OVERRIDES:
        if env_name in os.environ:
            config.setdefault(section, {})[key] = convert(os.environ[env_name])

    return config


def require_credentials(config: Dict[str, Any]) -> None:
    """
    Fail fast when external credentials are missing.

    Raises:
        ConfigurationError: naming every missing environment variable
    """
    missing: List[str] = [
        env_name
        for section, key, env_name in REQUIRED_CREDENTIALS
        if not config.get(section, {}).get(key)
    ]
    if missing:
        raise ConfigurationError(
            f"Missing required configuration: {', '.join(missing)}",
            missing=missing,
        )


__all__ = ["load_config", "require_credentials"]
