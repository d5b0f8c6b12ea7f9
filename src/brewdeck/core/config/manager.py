"""
Configuration Manager

Builds an :class:`AppConfig` from layered sources. Later layers win:

    defaults < config file < BREWDECK_* environment < explicit overrides
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from brewdeck.core.config.models import AppConfig
from brewdeck.core.exceptions import ConfigurationError, ErrorCode


logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("brewdeck.yaml", "brewdeck.yml", ".brewdeck.yaml")

TRUE_VALUES = frozenset({'true', '1', 'yes', 'on', 'enabled'})


def _parse_bool(value: Union[str, bool]) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in TRUE_VALUES
    return bool(value)


# env suffix -> (path into the config mapping, parser)
ENV_SETTINGS: Dict[str, Tuple[Tuple[str, ...], Callable[[str], Any]]] = {
    "CACHE_TTL": (("cache", "default_ttl"), float),
    "CACHE_MAX_ENTRIES": (("cache", "max_entries"), int),
    "CACHE_STRATEGY": (("cache", "strategy"), str),
    "CACHE_PERSIST": (("cache", "persistence_enabled"), _parse_bool),
    "CACHE_PATH": (("cache", "persistence_path"), str),
    "API_MAX_RETRIES": (("retry", "api_max_retries"), int),
    "COMMAND_MAX_RETRIES": (("retry", "command_max_retries"), int),
    "BREW_PATH": (("clients", "brew_path"), str),
    "API_BASE_URL": (("clients", "api_base_url"), str),
    "API_TIMEOUT": (("clients", "api_timeout"), float),
    "PREFETCH_ENABLED": (("prefetch", "enabled"), _parse_bool),
    "PREFETCH_MAX_CONCURRENT": (("prefetch", "max_concurrent_requests"), int),
    "PREFETCH_WIFI_ONLY": (("prefetch", "wifi_only"), _parse_bool),
    "LOG_LEVEL": (("log_level",), str),
    "BACKGROUND_TASKS": (("start_background_tasks",), _parse_bool),
}


def _assign(target: Dict[str, Any], path: Tuple[str, ...], value: Any) -> None:
    *parents, leaf = path
    for part in parents:
        target = target.setdefault(part, {})
    target[leaf] = value


class ConfigManager:
    """
    Loads and validates BrewDeck configuration.

    A file given explicitly is used as-is; otherwise the first existing file
    from :meth:`_get_default_config_paths` is read. ``.json`` files are parsed
    as JSON, everything else as YAML.
    """

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.config_file = Path(config_file) if config_file else None
        self._config: Optional[AppConfig] = None
        self._config_paths = self._get_default_config_paths()

    @staticmethod
    def _get_default_config_paths() -> List[Path]:
        cwd = Path.cwd()
        paths = [cwd / name for name in CONFIG_FILENAMES]
        paths.append(Path.home() / ".config" / "brewdeck" / "config.yaml")

        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            paths.append(Path(xdg_config) / "brewdeck" / "config.yaml")
        return paths

    def load_config(
        self,
        overrides: Optional[Dict[str, Any]] = None,
        env_prefix: str = "BREWDECK_",
    ) -> AppConfig:
        """
        Merge every source and validate the result.

        Args:
            overrides: Nested mapping applied on top of everything else
            env_prefix: Prefix of the environment variables to read

        Raises:
            ConfigurationError: A source is unreadable or the merged result
                does not validate
        """
        layers = [
            ("file", self._load_config_file() or {}),
            ("environment", self._load_env_config(env_prefix)),
            ("overrides", overrides or {}),
        ]

        merged: Dict[str, Any] = {}
        applied = []
        for name, layer in layers:
            if layer:
                merged = self._deep_merge(merged, layer)
                applied.append(name)

        try:
            config = AppConfig(**merged)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}", cause=e)

        logger.debug(f"Configuration loaded from: {', '.join(applied) or 'defaults'}")
        self._config = config
        return config

    def _find_config_file(self) -> Optional[Path]:
        if self.config_file:
            return self.config_file if self.config_file.exists() else None
        return next((p for p in self._config_paths if p.is_file()), None)

    def _load_config_file(self) -> Optional[Dict[str, Any]]:
        path = self._find_config_file()
        if path is None:
            return None

        try:
            text = path.read_text(encoding='utf-8')
            if path.suffix.lower() == '.json':
                data = json.loads(text)
            else:
                data = yaml.safe_load(text) or {}
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Failed to load config file {path}: {e}",
                error_code=ErrorCode.CONFIG_INVALID_FORMAT,
                cause=e,
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file {path} must contain a mapping",
                error_code=ErrorCode.CONFIG_INVALID_FORMAT,
            )

        logger.info(f"Loaded configuration file: {path}")
        return data

    def _load_env_config(self, prefix: str) -> Dict[str, Any]:
        """Collect ``<prefix><SETTING>`` variables into a nested mapping."""
        result: Dict[str, Any] = {}

        for suffix, (path, parser) in ENV_SETTINGS.items():
            env_var = prefix + suffix
            raw = os.environ.get(env_var)
            if raw is None:
                continue
            try:
                value = parser(raw)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"Invalid value for {env_var}: {raw} ({e})",
                    config_key=env_var,
                    config_value=raw,
                )
            _assign(result, path, value)

        return result

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(base)
        for key, value in override.items():
            current = merged.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                merged[key] = self._deep_merge(current, value)
            else:
                merged[key] = value
        return merged

    _parse_bool = staticmethod(_parse_bool)

    @property
    def config(self) -> Optional[AppConfig]:
        """Most recently loaded configuration."""
        return self._config
