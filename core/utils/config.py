"""
Configuration utility functions
"""

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


def load_yaml(filepath: str) -> dict[str, Any]:
    """
    Load YAML file and return as dictionary

    Args:
        filepath: Path to YAML file (relative or absolute)

    Returns:
        Dictionary with YAML data (empty dict for an empty file)

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If the document is not a mapping

    Example:
        >>> config = load_yaml("config/providers/databases.yaml")
        >>> print(config['clickhouse']['addresses'])
        ['127.0.0.1:9000']
    """
    path = Path(filepath)

    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {filepath}")

    with open(path) as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML file must contain a mapping: {filepath}")
    return data


def load_yaml_safe(filepath: str) -> dict[str, Any]:
    """
    Load YAML file with fallback to empty dict if file is missing or invalid

    Args:
        filepath: Path to YAML file

    Returns:
        Dictionary with YAML data, or empty dict (built-in defaults apply)
    """
    try:
        return load_yaml(filepath)
    except FileNotFoundError:
        return {}
    except (yaml.YAMLError, ValueError) as e:
        logger.warning(f"Ignoring invalid YAML config {filepath}: {e}")
        return {}
