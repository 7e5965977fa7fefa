"""
Clearing of agent footprints in a merged grid

Agents show up as obstacles in each other's maps. Their current positions are
marked free so that the merged grid does not contain phantom obstacles where
an agent stands.
"""

import math
from typing import List, Optional, Tuple
import logging

from gridstitch.core.grid import FREE_CELL, OccupancyGrid
from gridstitch.core.pose_resolver import PoseLookupError, PoseResolver

logger = logging.getLogger(__name__)


def world_to_pixel(grid: OccupancyGrid, world_x: float, world_y: float) -> Tuple[int, int]:
    """Cell coordinates (px, py) containing a world position"""
    px = math.floor((world_x - grid.origin.x) / grid.resolution)
    py = math.floor((world_y - grid.origin.y) / grid.resolution)
    return px, py


def clear_neighborhood(grid: OccupancyGrid, px: int, py: int, half_width: int) -> int:
    """
    Mark the square of cells around (px, py) as free, in-bounds cells only.

    Returns:
        Number of cells written
    """
    x_lo = max(0, px - half_width)
    x_hi = min(grid.width, px + half_width + 1)
    y_lo = max(0, py - half_width)
    y_hi = min(grid.height, py + half_width + 1)
    if x_lo >= x_hi or y_lo >= y_hi:
        return 0
    grid.data[y_lo:y_hi, x_lo:x_hi] = FREE_CELL
    return (x_hi - x_lo) * (y_hi - y_lo)


class AgentMasker:
    """Mark tracked agents' surroundings as free space"""

    def __init__(
        self,
        resolver: PoseResolver,
        agent_frames: Optional[List[str]] = None,
        half_width: int = 3,
        timeout: float = 3.0
    ):
        """
        Args:
            resolver: Source of live agent poses in the global frame
            agent_frames: Frame ids of tracked agents (e.g. 'tb3_0/base_link')
            half_width: Cells cleared in each direction around an agent
            timeout: Maximum wait per agent pose lookup (seconds)
        """
        if half_width < 0:
            raise ValueError(f"half_width must be non-negative, got {half_width}")
        self.resolver = resolver
        self.agent_frames = list(agent_frames or [])
        self.half_width = half_width
        self.timeout = timeout

    def mask(self, grid: OccupancyGrid) -> int:
        """
        Clear agent neighborhoods in place.

        A failed lookup only skips that agent.

        Returns:
            Number of agents masked
        """
        if not self.agent_frames:
            return 0
        if grid.resolution <= 0:
            logger.warning("Grid resolution unknown, skipping agent masking")
            return 0

        masked = 0
        for frame_id in self.agent_frames:
            try:
                pose = self.resolver.resolve(frame_id, self.timeout)
            except (PoseLookupError, TimeoutError) as e:
                logger.error(f"Could not resolve pose of {frame_id}: {e}")
                continue

            px, py = world_to_pixel(grid, pose.x, pose.y)
            cleared = clear_neighborhood(grid, px, py, self.half_width)
            logger.debug(f"Agent {frame_id} at pixel ({px}, {py}), cleared {cleared} cells")
            masked += 1

        return masked
