"""
Runtime configuration.

Values come from, in increasing priority: built-in defaults, a JSON config
file, and ``VIBEDOCS_*`` environment variables. Command line flags are applied
on top by the CLI.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .core.tree import EXCLUDED_DIRS

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = 'vibedocs.json'

DEFAULTS: Dict[str, Any] = {
    'projects_dir': str(Path.home() / 'projects'),
    'host': '127.0.0.1',
    'port': 8080,
    'log_dir': None,
    'watch': True,
    'debounce_seconds': 0.2,
    'queue_size': 256,
    'excluded_dirs': sorted(EXCLUDED_DIRS),
    'max_upload_bytes': 50 * 1024 * 1024,  # 50 MB
    'debug': False,
}

ENV_VARS = {
    'VIBEDOCS_ROOT': ('projects_dir', str),
    'VIBEDOCS_HOST': ('host', str),
    'VIBEDOCS_PORT': ('port', int),
    'VIBEDOCS_LOG_DIR': ('log_dir', str),
    'VIBEDOCS_WATCH': ('watch', 'bool'),
    'VIBEDOCS_DEBUG': ('debug', 'bool'),
}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _from_env(environ) -> Dict[str, Any]:
    values = {}
    for var, (key, kind) in ENV_VARS.items():
        raw = environ.get(var)
        if raw is None or raw == '':
            continue
        try:
            values[key] = _parse_bool(raw) if kind == 'bool' else kind(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {var}: {raw!r}")
    if environ.get('FLASK_ENV') == 'development':
        values.setdefault('debug', True)
    return values


def _from_file(config_file: Path) -> Dict[str, Any]:
    if not config_file.exists():
        return {}
    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load config {config_file}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.error(f"Config {config_file} must contain a JSON object")
        return {}
    unknown = set(data) - set(DEFAULTS)
    if unknown:
        logger.warning(f"Unknown config keys ignored: {', '.join(sorted(unknown))}")
    return {k: v for k, v in data.items() if k in DEFAULTS}


def load_config(config_file: Optional[Path] = None, environ=None) -> Dict[str, Any]:
    """Load configuration from defaults, the config file and the environment."""
    environ = os.environ if environ is None else environ
    config_file = Path(config_file) if config_file else Path.cwd() / CONFIG_FILE_NAME

    config = dict(DEFAULTS)
    config.update(_from_file(config_file))
    config.update(_from_env(environ))
    config['excluded_dirs'] = frozenset(config['excluded_dirs'])
    return config


def save_config(config: Dict[str, Any], config_file: Path) -> None:
    data = {k: v for k, v in config.items() if k in DEFAULTS}
    if isinstance(data.get('excluded_dirs'), (set, frozenset)):
        data['excluded_dirs'] = sorted(data['excluded_dirs'])
    with open(config_file, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
    logger.info(f"Configuration saved to {config_file}")
