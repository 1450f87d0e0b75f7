"""
Configuration loading for the CFMM arbitrage system.

Loads YAML files, validates them against the schema and builds the pool
registry the search runs on.
"""

from pathlib import Path
from typing import Any, Dict, Tuple, Union

import pydantic
import yaml

from .config_schema import ArbitrageConfig, validate_arbitrage_config
from .exceptions import ConfigurationError, InvalidPoolInvariant
from .registry import PoolRegistry


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}") from e

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"Configuration root must be a mapping: {config_path}"
        )
    return config_dict


def _format_errors(error: pydantic.ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def parse_config(config_dict: Dict[str, Any]) -> ArbitrageConfig:
    """
    Validate a configuration mapping.

    Raises:
        ConfigurationError: If the mapping fails schema validation
    """
    try:
        return validate_arbitrage_config(config_dict)
    except pydantic.ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed: {_format_errors(e)}",
            details={"errors": e.errors()},
        ) from e


def load_config(config_path: Union[str, Path]) -> ArbitrageConfig:
    """
    Load and validate an arbitrage configuration file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If the file cannot be loaded or is invalid
    """
    return parse_config(load_yaml_config(config_path))


def build_registry(config: ArbitrageConfig) -> PoolRegistry:
    """
    Raises:
        ConfigurationError: If a pool entry violates a pool invariant
    """
    try:
        return PoolRegistry(config.build_pools())
    except InvalidPoolInvariant as e:
        raise ConfigurationError(
            f"Invalid pool {e.pool_id}: {e}",
            details={"pool_id": e.pool_id, "field": e.field},
        ) from e


def load_search_inputs(
    config_path: Union[str, Path]
) -> Tuple[ArbitrageConfig, PoolRegistry]:
    """Load a configuration file and the registry of its pools."""
    config = load_config(config_path)
    return config, build_registry(config)
