"""
Submap merging server.

Ingests submaps from multiple robots, loads and preprocesses them on a
worker pool, merges them in arrival order into one global map and answers
pose lookups against that map while merging continues.

Subpackages:
- common/: constants, parameter models, SE(3) transforms
- backend/: map store, worker pool, submap queue, server node
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

__all__ = [
    "MapServerNode",
    "ServerParams",
    "MapLookupStatus",
    "SensorType",
]

_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    "MapServerNode": ("submap_server.backend.server_node", "MapServerNode"),
    "ServerParams": ("submap_server.common.param_models", "ServerParams"),
    "MapLookupStatus": ("submap_server.backend.map_lookup", "MapLookupStatus"),
    "SensorType": ("submap_server.backend.vi_map", "SensorType"),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
