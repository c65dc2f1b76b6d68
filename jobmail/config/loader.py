"""Configuration loader for jobmail."""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .models import AppConfig
from .validators import check_for_warnings, emit_warnings

DEFAULT_LOCATIONS = (Path("config.yaml"), Path("config") / "config.yaml")


def load_config(config_path: Optional[Path] = None) -> tuple[AppConfig, EnvironmentConfig]:
    """
    Load the YAML configuration and the environment, then apply env overrides.

    Config file lookup:
    1. ``config_path`` when given (must exist)
    2. ./config.yaml
    3. ./config/config.yaml
    4. built-in defaults when none of the above exists

    Environment overrides applied on top of the file:
    - MIN_SIMILARITY replaces filter.threshold
    - WORKER_CONCURRENCY fills queue concurrency left unset in the file

    Args:
        config_path: Optional explicit path to the configuration file

    Returns:
        Tuple of (AppConfig, EnvironmentConfig)

    Raises:
        ConfigurationError: If the file or the environment is invalid
    """
    config_file = _find_config_file(config_path)
    config_dict = _read_yaml(config_file) if config_file else {}

    warnings = check_for_warnings(config_dict)
    if warnings:
        emit_warnings(warnings)

    try:
        app_config = AppConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigurationError.from_validation_error(e) from e

    env_config = load_environment_config()
    apply_environment_overrides(app_config, env_config)

    return app_config, env_config


def apply_environment_overrides(app_config: AppConfig, env_config: EnvironmentConfig) -> None:
    """Fold environment-level settings into the validated app config."""
    if env_config.min_similarity is not None:
        app_config.filter.threshold = env_config.min_similarity

    for settings in (
        app_config.queues.extract,
        app_config.queues.enrich,
        app_config.queues.keyword_embedding,
    ):
        if settings.concurrency is None:
            settings.concurrency = env_config.worker_concurrency


def _read_yaml(config_file: Path) -> dict:
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML configuration: {e}",
            suggestions=[
                "Check YAML syntax in your config file",
                "Ensure proper indentation (use spaces, not tabs)",
            ],
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file: {e}",
            suggestions=[f"Ensure {config_file} is readable"],
        ) from e

    if config_dict is None:
        return {}
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            "Configuration file must contain a mapping at the top level",
            suggestions=["Review config.example.yaml for the expected layout"],
        )
    return config_dict


def _find_config_file(config_path: Optional[Path] = None) -> Optional[Path]:
    if config_path:
        if not config_path.exists():
            raise ConfigurationError(
                f"Specified configuration file not found: {config_path}",
                suggestions=[
                    f"Ensure {config_path} exists",
                    "Omit --config to run with built-in defaults",
                ],
            )
        return config_path

    for candidate in DEFAULT_LOCATIONS:
        if candidate.exists():
            return candidate
    return None
