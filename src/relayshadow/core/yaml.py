"""YAML configuration loading.

Used by [Store.from_yaml()][relayshadow.core.store.Store.from_yaml],
[Pool.from_yaml()][relayshadow.core.pool.Pool.from_yaml], and
[BaseService.from_yaml()][relayshadow.core.base_service.BaseService.from_yaml].
The returned dictionary is not validated here; callers pass it to a
Pydantic model.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str) -> dict[str, Any]:
    """Load and parse a YAML configuration file with ``yaml.safe_load``.

    Args:
        config_path: Path to the YAML file (absolute or relative).

    Returns:
        Parsed configuration. Empty dict if the file contains no data.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML or its top
            level is not a mapping.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping, got {type(data).__name__}"
        )
    return data
