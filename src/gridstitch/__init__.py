"""
GridStitch - Occupancy grid merging

Aligns occupancy grids built independently by several agents and merges
them into one grid:
- Feature-based transform estimation with bundle adjustment
- Warping and compositing into a shared reference frame
- Clearing of agent footprints in the merged grid
"""

__version__ = "0.1.0"

from .core.grid import OccupancyGrid, Pose2D
from .core.merging_pipeline import MergingPipeline
from .utils.config import MergeConfig

__all__ = [
    'OccupancyGrid',
    'Pose2D',
    'MergingPipeline',
    'MergeConfig'
]
