"""
Loading of scenario YAML files.
"""

import logging
from pathlib import Path

import yaml

from mpctrack.core.common.exceptions import ConfigurationError
from mpctrack.core.common.horizon_config import ControlConfig, HorizonConfig

logger = logging.getLogger(__name__)


def load_yaml(file):
    """
    Load a YAML configuration file.
    Args:
        file (str or Path): Path to the YAML file.
    Returns:
        dict: Parsed document (empty for an empty file).
    """
    path = Path(file)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    with open(path, 'r') as stream:
        try:
            params = yaml.safe_load(stream) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(params, dict):
        raise ConfigurationError(f"Top level of {path} must be a mapping")
    logger.info(f"Loaded configuration from {path}")
    return params


def load_configs(file):
    """
    Load and validate the 'mpc' and 'control' sections of a scenario file.
    Returns:
        tuple(HorizonConfig, ControlConfig, dict): Validated configs and the raw document.
    """
    params = load_yaml(file)
    return (HorizonConfig.from_dict(params.get('mpc')),
            ControlConfig.from_dict(params.get('control')),
            params)
