"""
User configuration loading.

The configuration file holds global ``settings`` plus optional ``workflows``
and ``presets`` mappings. It is read once into an immutable ``Config`` value
that callers pass to the loader and engine.
"""

import copy
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .exceptions import LoadError, ValidationError

logger = logging.getLogger(__name__)


CONFIG_ENV_VAR = "IMGPIPE_CONFIG"
DEFAULT_CONFIG_DIR = Path.home() / ".imgpipe"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "output_dir": "./output",
    "temp_dir": str(Path(tempfile.gettempdir()) / "imgpipe"),
    "parallel_jobs": 4,
    "timeout": None,
    "stop_on_failure": False,
    "log_level": "info",
    "quality": {
        "jpg": 85,
        "jpeg": 85,
        "webp": 90,
        "png": 95,
        "tiff": 95,
        "bmp": 95,
    },
}

KNOWN_SECTIONS = {"settings", "workflows", "presets"}


@dataclass(frozen=True)
class Config:
    """
    Loaded configuration.

    Attributes:
        settings: Global settings (defaults overlaid with the file's settings)
        workflows: Raw workflow documents keyed by name
        presets: Raw preset documents keyed by name
        config_dir: Directory searched for workflows/<name>.yaml and presets/<name>.yaml
        path: File the configuration was read from, if any
    """
    settings: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_SETTINGS))
    workflows: Dict[str, Any] = field(default_factory=dict)
    presets: Dict[str, Any] = field(default_factory=dict)
    config_dir: Optional[Path] = None
    path: Optional[Path] = None

    def setting(self, key: str, default: Any = None) -> Any:
        return self.settings.get(key, default)


def default_config_path() -> Path:
    """Resolve the configuration path from the environment or the home default."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_FILE


def load_config(path: Optional[Path] = None) -> Config:
    """
    Load the configuration file.

    Args:
        path: Explicit configuration file. When omitted the path comes from
            $IMGPIPE_CONFIG or ~/.imgpipe/config.yaml; a missing default file
            yields the built-in defaults.

    Returns:
        Config value

    Raises:
        LoadError: If the file is unreadable, not a mapping, or has bad sections
    """
    explicit = path is not None
    config_path = Path(path).expanduser() if explicit else default_config_path()

    if not config_path.exists():
        if explicit:
            raise LoadError.single(f"Configuration file not found: {config_path}", str(config_path))
        logger.debug(f"No configuration file at {config_path}, using defaults")
        return Config(config_dir=config_path.parent)

    try:
        with open(config_path, 'r') as f:
            document = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise LoadError.single(f"Failed to load configuration: {e}", str(config_path))

    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise LoadError.single("Configuration must be a YAML mapping", str(config_path))

    errors = []
    for key in document:
        if key not in KNOWN_SECTIONS:
            logger.warning(f"Ignoring unknown configuration section '{key}' in {config_path}")

    for section in KNOWN_SECTIONS:
        value = document.get(section)
        if value is not None and not isinstance(value, dict):
            errors.append(ValidationError(f"'{section}' must be a mapping", str(config_path)))
    if errors:
        raise LoadError(errors)

    settings = copy.deepcopy(DEFAULT_SETTINGS)
    settings.update(document.get("settings") or {})

    logger.debug(f"Loaded configuration from {config_path}")
    return Config(
        settings=settings,
        workflows=document.get("workflows") or {},
        presets=document.get("presets") or {},
        config_dir=config_path.parent,
        path=config_path,
    )
