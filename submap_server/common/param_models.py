"""Pydantic parameter models for the submap server."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field

from submap_server.common import constants


class ServerParams(BaseModel):
    """Map server node parameter model."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    # Threads that load and pre-process incoming submaps. Separate from the one
    # thread that merges into the global map.
    submap_loading_thread_pool_size: int = Field(constants.SUBMAP_LOADING_THREAD_POOL_SIZE_DEFAULT, ge=1)

    # Where finished/intermediate maps are stored. Saving is disabled while empty.
    merged_map_folder: str = ""
    # Resource folder of the merged map; empty keeps the map's own setting.
    resource_folder: str = ""

    backup_interval_s: float = Field(constants.BACKUP_INTERVAL_S_DEFAULT, ge=0.0)
    overwrite_existing_map: bool = True

    submap_commands: List[str] = Field(default_factory=list)
    global_map_commands: List[str] = Field(default_factory=list)

    merge_poll_interval_s: float = Field(constants.MERGE_POLL_INTERVAL_S_DEFAULT, gt=0.0)
    status_interval_s: float = Field(constants.STATUS_INTERVAL_S_DEFAULT, gt=0.0)
