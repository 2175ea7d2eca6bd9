"""
Submap server backend.

Structure:
- vi_map.py: map data model (missions, sensors, vertices)
- map_store.py: keyed map storage with read/write access handles
- command_engine.py: named map processing commands
- pose_interpolator.py: trajectory interpolation
- worker_pool.py: thread pool with exclusivity groups
- submap_queue.py: submap tasks, arrival-ordered queue, robot -> mission index
- status.py: status snapshot and rendering
- map_lookup.py: global-frame pose lookup
- server_node.py: server node (ingestion, merge loop, status loop) and entry point
"""

# Lazy imports to avoid circular dependencies
__all__ = [
    "MapServerNode",
    "MapStore",
]


def __getattr__(name):
    if name == "MapServerNode":
        from submap_server.backend.server_node import MapServerNode
        return MapServerNode
    elif name == "MapStore":
        from submap_server.backend.map_store import MapStore
        return MapStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
