"""
Submap server constants.

=============================================================================
CONVENTION QUICK REFERENCE
=============================================================================

SE(3) POSES:
  6D: [trans(3), rotvec(3)] = [x, y, z, rx, ry, rz]

FRAMES:
  G = global frame (defined by the first merged mission)
  M = mission frame, B = robot body frame, S = sensor frame
  T_G_S = T_G_M * T_M_B * T_B_S
  p_G = R_G_S @ p_S + t_G_S

TIMESTAMPS:
  Integer nanoseconds everywhere (vertex stamps and lookups).
=============================================================================
"""

# =============================================================================
# MAP STORE
# =============================================================================

# Key of the single global map all submaps are merged into.
MERGED_MAP_KEY = "merged_map"

# File holding the serialized map inside a map folder.
MAP_FILE_NAME = "vi_map.yaml"

# Characters of the path digest used in derived submap keys.
MAP_KEY_DIGEST_LENGTH = 12

# =============================================================================
# SERVER DEFAULTS
# =============================================================================

SUBMAP_LOADING_THREAD_POOL_SIZE_DEFAULT = 4
BACKUP_INTERVAL_S_DEFAULT = 300.0  # 0 disables periodic backups

# Merge loop sleeps this long between passes over the submap queue.
MERGE_POLL_INTERVAL_S_DEFAULT = 1.0

# Status loop emits one snapshot per interval.
STATUS_INTERVAL_S_DEFAULT = 1.0

# =============================================================================
# WORKER POOL
# =============================================================================

# Group id for jobs that may run fully in parallel.
GROUP_ID_NON_EXCLUSIVE = -1

# =============================================================================
# OBSERVABILITY
# =============================================================================

# Marker values for the per-submap and merge "current command" tables.
COMMAND_LOADING = "loading"
COMMAND_MERGING_SUBMAP = "merging submap"
COMMAND_SAVE_MAP = "save map"

STATUS_SEPARATOR = "=" * 66
