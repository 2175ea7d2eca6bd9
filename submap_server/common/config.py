"""
YAML configuration loading for the submap server.

Accepted layouts:

    submap_loading_thread_pool_size: 4        # bare mapping
    ...

    submap_server:                            # named section
      parameters:                             # optional wrapper
        submap_loading_thread_pool_size: 4
"""

from __future__ import annotations

import os
from typing import Any, Dict

import yaml

from submap_server.common.param_models import ServerParams

SECTION_NAME = "submap_server"
PARAMETERS_KEY = "parameters"


def _load_yaml_file(path: str) -> Dict[str, Any]:
    """Load a YAML file, unwrapping the server section if present."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at top level of {path}, got {type(data).__name__}")

    if SECTION_NAME in data:
        data = data[SECTION_NAME] or {}
        if PARAMETERS_KEY in data:
            data = data[PARAMETERS_KEY] or {}
    return data


def load_server_params(path: str, **overrides: Any) -> ServerParams:
    """
    Load ServerParams from a YAML file.

    Keyword overrides win over file values. Raises FileNotFoundError for a
    missing file and pydantic.ValidationError for invalid values.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Server config not found: {path}")
    merged = {**_load_yaml_file(path), **overrides}
    return ServerParams(**merged)
