"""
Runtime settings for boundary-secrets.

Settings are a plain dictionary of defaults overlaid with a YAML (or JSON)
file. They cover how the broker runs, not the cluster configuration, which
is written through the config path and kept in storage.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "BOUNDARY_SECRETS_CONFIG"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "mock_mode": False,
    "storage_file": None,
    "audit_dir": "audit",
    "request_timeout": 10.0,
    "cleanup_timeout": 5.0,
    "default_ttl": 3600,
    "max_ttl": 86400,
    "tls_verify": True,
    "log_level": "INFO",
    "host": "127.0.0.1",
    "port": 8200,
}


def load_settings(config_path: Optional[Union[str, Path]] = None,
                  overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Load settings.

    Args:
        config_path: YAML or JSON settings file; falls back to the
            BOUNDARY_SECRETS_CONFIG environment variable
        overrides: Values that win over both defaults and file

    Returns:
        Settings dictionary
    """
    settings = dict(DEFAULT_SETTINGS)

    config_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if config_path:
        path = Path(config_path)
        with open(path, encoding="utf-8") as f:
            file_settings = yaml.safe_load(f) or {}
        if not isinstance(file_settings, dict):
            raise ValueError(f"Settings file {path} must contain a mapping")

        unknown = set(file_settings) - set(DEFAULT_SETTINGS)
        if unknown:
            logger.warning(f"Ignoring unknown settings in {path}: {', '.join(sorted(unknown))}")
        settings.update({k: v for k, v in file_settings.items() if k in DEFAULT_SETTINGS})
        logger.info(f"Loaded settings from {path}")

    if overrides:
        settings.update({k: v for k, v in overrides.items() if v is not None})

    return settings
