"""
Configuration Loader

Reads the YAML config file, layers environment overrides on top and
validates the result against EngineSettings (config_schema.py).

Environment Variable Overrides:
    INBOX_RULES_<SECTION>_<KEY>, e.g.

        INBOX_RULES_DATABASE_PATH=/var/lib/inbox_rules.db
        INBOX_RULES_AI_ENABLED=false
        INBOX_RULES_SWEEP_MAX_WORKERS=4

    Values are converted to the type the schema declares for that key.
    Unknown sections or keys are logged and ignored.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from inbox_rules.config_schema import EngineSettings
from inbox_rules.errors import ErrorCode

logger = logging.getLogger(__name__)

ENV_PREFIX = "INBOX_RULES_"
TRUE_VALUES = ('true', '1', 'yes', 'on')


class ConfigError(Exception):
    """
    Configuration could not be loaded.

    Raised for a missing or unreadable file, bad YAML, schema violations,
    badly typed environment overrides, and unset secrets.
    """

    def __init__(self, message: str, code: str = ErrorCode.CONFIG_INVALID):
        super().__init__(message)
        self.code = code


def _coerce(env_key: str, raw: str, annotation: Any) -> Any:
    if annotation is bool:
        return raw.strip().lower() in TRUE_VALUES
    if annotation in (int, float):
        try:
            return annotation(raw)
        except ValueError as e:
            kind = "an integer" if annotation is int else "a number"
            raise ConfigError(f"{env_key} must be {kind}, got: {raw!r}") from e
    return raw


def collect_env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Dict[str, Any]]:
    """
    Partial config built from INBOX_RULES_* variables.

    Returns:
        {section: {key: typed value}}

    Raises:
        ConfigError: If a numeric override cannot be converted
    """
    environ = os.environ if environ is None else environ
    sections = {name: field.annotation for name, field in EngineSettings.model_fields.items()}
    overrides: Dict[str, Dict[str, Any]] = {}

    for env_key in sorted(environ):
        if not env_key.startswith(ENV_PREFIX):
            continue

        name = env_key[len(ENV_PREFIX):].lower()
        section = next((candidate for candidate in sections if name.startswith(candidate + '_')), None)
        if section is None:
            logger.warning(f"Ignoring {env_key}: no configuration section matches")
            continue

        key = name[len(section) + 1:]
        field = sections[section].model_fields.get(key)
        if field is None:
            logger.warning(f"Ignoring {env_key}: section '{section}' has no key '{key}'")
            continue

        overrides.setdefault(section, {})[key] = _coerce(env_key, environ[env_key], field.annotation)

    if overrides:
        applied = [f"{section}.{key}" for section, values in overrides.items() for key in values]
        logger.info(f"Environment overrides: {', '.join(applied)}")
    return overrides


def _apply_overrides(config: Dict[str, Any], overrides: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    merged = dict(config)
    for section, values in overrides.items():
        current = merged.get(section)
        merged[section] = {**(current if isinstance(current, dict) else {}), **values}
    return merged


def build_settings(config: Dict[str, Any]) -> EngineSettings:
    """
    Validate a config mapping.

    Raises:
        ConfigError: If the mapping violates the schema
    """
    try:
        return EngineSettings.model_validate(config)
    except PydanticValidationError as e:
        message = f"Configuration validation failed: {e}"
        logger.error(message)
        raise ConfigError(message) from e


class ConfigLoader:
    """
    Loads one YAML config file.

    Example:
        >>> settings = ConfigLoader('config/config.yaml').load()
        >>> settings.sweep.max_workers
        8
    """

    def __init__(self, config_path: Union[str, Path]):
        self.config_path = Path(config_path)
        if not self.config_path.is_file():
            raise ConfigError(f"Config file not found: {self.config_path}", code=ErrorCode.CONFIG_MISSING)

    def read(self) -> Dict[str, Any]:
        """Raw mapping from the file, without the ``logging`` section."""
        try:
            text = self.config_path.read_text(encoding='utf-8')
        except OSError as e:
            raise ConfigError(f"Cannot read {self.config_path}: {e}") from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"YAML parse error in {self.config_path}: {e}") from e

        if data is None:
            raise ConfigError(f"Config file {self.config_path} is empty")
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {self.config_path} must contain a mapping, got {type(data).__name__}")

        # Read separately by init_logging()
        data.pop('logging', None)
        return data

    def load(self) -> EngineSettings:
        """File values, then environment overrides, then validation."""
        logger.info(f"Loading rule engine config from {self.config_path}")
        return build_settings(_apply_overrides(self.read(), collect_env_overrides()))


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    env_path: Optional[Union[str, Path]] = ".env"
) -> EngineSettings:
    """
    Build the settings object for this process.

    Secrets are loaded from ``env_path`` when that file exists. Without a
    config file the schema defaults are used, plus environment overrides.

    Raises:
        ConfigError: If configuration loading or validation fails
    """
    if env_path and Path(env_path).is_file():
        load_dotenv(env_path)
        logger.info(f"Loaded secrets from {env_path}")

    if config_path is None:
        return build_settings(collect_env_overrides())

    return ConfigLoader(config_path).load()
