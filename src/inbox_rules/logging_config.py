"""
Logging Configuration Module

Configures the ``inbox_rules`` logger tree. Modules log through
``logging.getLogger(__name__)`` and inherit the handlers set up here.

Sources, lowest to highest precedence:
    1. DEFAULT_CONFIG
    2. A YAML file (its ``logging`` section if it has one)
    3. LOG_LEVEL, LOG_FORMAT, LOG_FILE, LOG_CONSOLE, LOG_JSON_FILE
    4. Runtime overrides passed to init_logging()

Usage:
    >>> init_logging()
    >>> init_logging(config_path='config/config.yaml')
    >>> init_logging(overrides={'level': 'DEBUG', 'format': 'json'})
"""
import copy
import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import yaml

from inbox_rules.logging_context import get_logging_context

ROOT_LOGGER_NAME = 'inbox_rules'

UNSET = 'N/A'
TRUE_VALUES = ('true', '1', 'yes', 'on')

PLAIN_FORMAT = '%(asctime)s %(levelname)-8s [%(correlation_id)s] [%(actor)s] [%(component)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

DEFAULT_CONFIG = {
    'level': 'INFO',
    'format': 'plain',
    'handlers': {
        'console': {'enabled': True, 'level': 'INFO'},
        'file': {
            'enabled': False,
            'path': 'logs/inbox_rules.log',
            'level': 'INFO',
            'max_bytes': 10 * 1024 * 1024,
            'backup_count': 5,
        },
        'json_file': {'enabled': False, 'path': 'logs/inbox_rules.jsonl', 'level': 'INFO'},
    },
}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; context fields are left out when unset."""

    CONTEXT_FIELDS = ('correlation_id', 'actor')

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec='milliseconds'),
            'level': record.levelname,
            'component': getattr(record, 'component', record.name),
            'message': record.getMessage(),
        }
        for name in self.CONTEXT_FIELDS:
            value = getattr(record, name, UNSET)
            if value not in (None, UNSET):
                entry[name] = value
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Copies logging_context fields onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = get_logging_context()
        record.correlation_id = context.get('correlation_id', UNSET)
        record.actor = context.get('actor', UNSET)
        if not hasattr(record, 'component'):
            # 'inbox_rules.sweep' -> 'sweep'
            record.component = record.name.rsplit('.', 1)[-1]
        return True


def _read_config_file(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Logging config file not found: {path}")

    data = yaml.safe_load(path.read_text(encoding='utf-8')) or {}
    if 'logging' in data:
        return data['logging'] or {}
    return data


def _env_overrides() -> Dict[str, Any]:
    """LOG_* environment variables as a partial config."""
    overrides: Dict[str, Any] = {}
    handlers: Dict[str, Dict[str, Any]] = {}

    if os.environ.get('LOG_LEVEL'):
        overrides['level'] = os.environ['LOG_LEVEL'].upper()
    if os.environ.get('LOG_FORMAT'):
        overrides['format'] = os.environ['LOG_FORMAT'].lower()
    if os.environ.get('LOG_FILE'):
        handlers['file'] = {'enabled': True, 'path': os.environ['LOG_FILE']}
    if 'LOG_CONSOLE' in os.environ:
        handlers['console'] = {'enabled': os.environ['LOG_CONSOLE'].lower() in TRUE_VALUES}
    if 'LOG_JSON_FILE' in os.environ:
        handlers['json_file'] = {'enabled': os.environ['LOG_JSON_FILE'].lower() in TRUE_VALUES}

    if handlers:
        overrides['handlers'] = handlers
    return overrides


def _deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _level(name: Optional[str]) -> int:
    return getattr(logging, str(name).upper(), logging.INFO) if name else logging.INFO


def _formatter(log_format: str) -> logging.Formatter:
    if log_format == 'json':
        return JSONFormatter()
    return logging.Formatter(fmt=PLAIN_FORMAT, datefmt=DATE_FORMAT)


def _log_path(settings: Dict[str, Any], default: str) -> Path:
    path = Path(settings.get('path') or default)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _console_handler(settings: Dict[str, Any], log_format: str) -> logging.Handler:
    # stderr keeps stdout free for command output
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(log_format))
    return handler


def _file_handler(settings: Dict[str, Any], log_format: str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        str(_log_path(settings, 'logs/inbox_rules.log')),
        maxBytes=settings.get('max_bytes', 10 * 1024 * 1024),
        backupCount=settings.get('backup_count', 5),
        encoding='utf-8'
    )
    handler.setFormatter(_formatter(log_format))
    return handler


def _json_file_handler(settings: Dict[str, Any], log_format: str) -> logging.Handler:
    handler = logging.FileHandler(str(_log_path(settings, 'logs/inbox_rules.jsonl')), encoding='utf-8')
    handler.setFormatter(JSONFormatter())
    return handler


HANDLER_BUILDERS: Dict[str, Callable[[Dict[str, Any], str], logging.Handler]] = {
    'console': _console_handler,
    'file': _file_handler,
    'json_file': _json_file_handler,
}


def _install_handlers(logger: logging.Logger, config: Dict[str, Any]) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    context_filter = ContextFilter()
    handlers_config = config.get('handlers', {})

    for name, build in HANDLER_BUILDERS.items():
        settings = handlers_config.get(name, {})
        if not settings.get('enabled', name == 'console'):
            continue
        handler = build(settings, config.get('format', 'plain'))
        handler.setLevel(_level(settings.get('level', config.get('level'))))
        handler.addFilter(context_filter)
        logger.addHandler(handler)


def init_logging(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Initialize the ``inbox_rules`` logger tree.

    Args:
        config_path: Optional YAML file
        overrides: Runtime overrides, e.g. {'level': 'DEBUG'}

    Returns:
        The effective configuration

    Raises:
        FileNotFoundError: If config_path is given but does not exist
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if config_path:
        config = _deep_merge(config, _read_config_file(config_path))
    config = _deep_merge(config, _env_overrides())
    if overrides:
        config = _deep_merge(config, overrides)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(_level(config.get('level')))
    root_logger.propagate = False
    _install_handlers(root_logger, config)

    root_logger.debug(f"Logging initialized: level={config.get('level')}, format={config.get('format')}")
    return config
