"""Configuration loader for the stop place sync service."""

import os
import re
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from src.models.config import AppConfig

log = structlog.stdlib.get_logger()

CONFIG_DIR = Path(__file__).parent.parent.parent / "config"
DEFAULT_CONFIG_NAME = "default.yaml"

# ${NAME} or ${NAME:-fallback}
ENV_REFERENCE = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<fallback>[^}]*))?\}")


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class ConfigLoader:
    """Builds the service's AppConfig from YAML layers and the environment.

    Without an explicit path, ``config/default.yaml`` is read first and
    ``config/{APP_ENV}.yaml`` (when present) is laid over it, section by section.
    """

    def __init__(self, config_dir: Path | str = CONFIG_DIR) -> None:
        self.config_dir = Path(config_dir)

    def load_config(self, config_path: str | None = None) -> AppConfig:
        """Load and validate the configuration.

        APP_<SECTION>__<KEY> environment variables win over YAML values, which
        win over the model defaults.

        Args:
            config_path: Single YAML file to load instead of the layered defaults

        Returns:
            AppConfig: Validated application configuration

        Raises:
            ConfigurationError: If a file is missing or unreadable, a referenced
                variable is unset, or validation fails
        """
        layers = [config_path] if config_path else self._layer_paths()
        log.info("loading_configuration", layers=layers)

        merged: dict[str, Any] = {}
        for path in layers:
            merged = _overlay(merged, self._read_layer(path))

        expanded = self._expand(merged)
        try:
            app_config = AppConfig(**expanded)
        except ValidationError as e:
            log.error("configuration_validation_failed", error=str(e))
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        log.info(
            "configuration_loaded_successfully",
            registry_url=str(app_config.registry.base_url),
            repository_url=str(app_config.repository.base_url),
        )
        return app_config

    def _layer_paths(self) -> list[str]:
        default_file = self.config_dir / DEFAULT_CONFIG_NAME
        if not default_file.exists():
            raise ConfigurationError(
                f"Configuration file not found: {default_file}. "
                "Create config/default.yaml or pass --config."
            )

        paths = [str(default_file)]
        env = os.getenv("APP_ENV")
        if env and env != "default":
            env_file = self.config_dir / f"{env}.yaml"
            if env_file.exists():
                paths.append(str(env_file))
            else:
                log.warning("environment_config_missing", app_env=env, path=str(env_file))
        return paths

    def _read_layer(self, config_path: str) -> dict[str, Any]:
        """Read one YAML layer.

        Raises:
            ConfigurationError: If the file is missing, unparsable, empty or not a mapping
        """
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                layer = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {config_path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML file {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file {config_path}: {e}") from e

        if layer is None:
            raise ConfigurationError(f"Configuration file is empty: {config_path}")
        if not isinstance(layer, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")

        log.debug("configuration_layer_read", config_path=config_path, sections=sorted(layer))
        return layer

    def _expand(self, value: Any) -> Any:
        """Replace ``${NAME}`` and ``${NAME:-fallback}`` references in every string value.

        Raises:
            ConfigurationError: If a reference without fallback names an unset variable
        """
        if isinstance(value, dict):
            return {key: self._expand(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._expand(item) for item in value]
        if not isinstance(value, str):
            return value

        def resolve(match: re.Match) -> str:
            name, fallback = match.group("name"), match.group("fallback")
            resolved = os.getenv(name, fallback)
            if resolved is None:
                raise ConfigurationError(
                    f"Required environment variable not set: {name}. "
                    f"Set {name} or give it a fallback with ${{{name}:-value}}."
                )
            return resolved

        return ENV_REFERENCE.sub(resolve, value)

    def validate_config(self, config: AppConfig) -> list[str]:
        """Return warnings for settings that are valid but likely mistakes.

        Args:
            config: Application configuration to check

        Returns:
            Warning messages (empty if none)
        """
        scheduler = config.scheduler
        warnings = []

        if scheduler.delta_cron == scheduler.full_cron:
            warnings.append(
                "scheduler.delta_cron and scheduler.full_cron are identical; "
                "every delivery will run as a full sync"
            )
        if scheduler.retry_delay_seconds < 1:
            warnings.append(
                f"scheduler.retry_delay_seconds ({scheduler.retry_delay_seconds}) "
                "is below one second and may flood a busy Repository"
            )
        if str(config.registry.base_url) == str(config.repository.base_url):
            warnings.append("registry.base_url and repository.base_url point to the same service")

        if warnings:
            log.warning("configuration_validation_warnings", warnings=warnings)
        return warnings


def _overlay(base: dict[str, Any], layer: dict[str, Any]) -> dict[str, Any]:
    """Merge ``layer`` over ``base``; nested sections merge key by key."""
    merged = dict(base)
    for key, value in layer.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _overlay(merged[key], value)
        else:
            merged[key] = value
    return merged
