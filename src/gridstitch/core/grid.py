"""
Occupancy grid data model

Grids are stored the way mapping nodes publish them: signed cells where -1 is
unknown and 0..100 runs from free to occupied. Feature detection works on the
same bytes read as unsigned, so unknown cells become bright (255) while free
and occupied cells keep their values.
"""

import math
import numpy as np
from typing import Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

UNKNOWN_CELL = -1
FREE_CELL = 0
OCCUPIED_CELL = 100

# Value of an unknown cell when the grid is viewed as an unsigned image
UNKNOWN_PIXEL = 255


def empty_image() -> np.ndarray:
    """Image standing in for a grid that never arrived"""
    return np.empty((0, 0), dtype=np.uint8)


def is_empty_image(image: Optional[np.ndarray]) -> bool:
    return image is None or image.size == 0


class Pose2D:
    """
    Planar pose: translation plus a quaternion about the z axis.

    A default constructed pose is all zero, which is not a valid rotation and
    is used to represent an unknown pose.
    """

    def __init__(
        self,
        x: float = 0.0,
        y: float = 0.0,
        qx: float = 0.0,
        qy: float = 0.0,
        qz: float = 0.0,
        qw: float = 0.0
    ):
        self.x = float(x)
        self.y = float(y)
        self.qx = float(qx)
        self.qy = float(qy)
        self.qz = float(qz)
        self.qw = float(qw)

    @classmethod
    def from_xy_yaw(cls, x: float, y: float, yaw: float = 0.0) -> 'Pose2D':
        """Create a valid pose from position and heading (radians)"""
        return cls(x=x, y=y, qz=math.sin(yaw / 2.0), qw=math.cos(yaw / 2.0))

    def is_valid(self) -> bool:
        """False for the all-zero quaternion used as 'unknown'"""
        return not (self.qx == 0.0 and self.qy == 0.0 and self.qz == 0.0 and self.qw == 0.0)

    @property
    def yaw(self) -> float:
        return 2.0 * math.atan2(self.qz, self.qw)

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return {
            'translation': {'x': self.x, 'y': self.y, 'z': 0.0},
            'rotation': {'x': self.qx, 'y': self.qy, 'z': self.qz, 'w': self.qw}
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Pose2D':
        """Create from dictionary"""
        translation = data.get('translation', {})
        rotation = data.get('rotation', {})
        return cls(
            x=translation.get('x', 0.0),
            y=translation.get('y', 0.0),
            qx=rotation.get('x', 0.0),
            qy=rotation.get('y', 0.0),
            qz=rotation.get('z', 0.0),
            qw=rotation.get('w', 0.0)
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Pose2D):
            return NotImplemented
        return (self.x, self.y, self.qx, self.qy, self.qz, self.qw) == \
            (other.x, other.y, other.qx, other.qy, other.qz, other.qw)

    def __repr__(self) -> str:
        return (f"Pose2D(x={self.x:.3f}, y={self.y:.3f}, "
                f"qz={self.qz:.4f}, qw={self.qw:.4f})")


class OccupancyGrid:
    """2D occupancy grid with metadata"""

    def __init__(
        self,
        data: np.ndarray,
        resolution: float = 0.0,
        origin: Optional[Pose2D] = None,
        frame_id: str = ""
    ):
        """
        Args:
            data: (height, width) array of cells, -1 unknown, 0..100 free..occupied
            resolution: Cell size in metres (0.0 = not determined)
            origin: Pose of cell (0, 0) in the grid frame
            frame_id: Name of the frame the grid lives in
        """
        data = np.asarray(data)
        if data.ndim != 2:
            raise ValueError(f"Grid data must be 2D, got shape {data.shape}")
        self.data = data.astype(np.int8, copy=False)
        self.resolution = float(resolution)
        self.origin = origin if origin is not None else Pose2D()
        self.frame_id = frame_id

    @classmethod
    def from_flat(
        cls,
        cells: List[int],
        width: int,
        height: int,
        resolution: float,
        origin: Optional[Pose2D] = None,
        frame_id: str = ""
    ) -> 'OccupancyGrid':
        """Build from row-major cell list as carried by grid messages"""
        if len(cells) != width * height:
            raise ValueError(f"Expected {width * height} cells, got {len(cells)}")
        data = np.asarray(cells, dtype=np.int8).reshape(height, width)
        return cls(data, resolution=resolution, origin=origin, frame_id=frame_id)

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    def is_empty(self) -> bool:
        return self.data.size == 0

    def flat(self) -> List[int]:
        """Row-major cell list"""
        return self.data.ravel().tolist()

    def to_image(self) -> np.ndarray:
        """Reinterpret cells as an unsigned image for feature detection"""
        if self.is_empty():
            return empty_image()
        return np.ascontiguousarray(self.data).view(np.uint8)

    def __repr__(self) -> str:
        return (f"OccupancyGrid({self.width}x{self.height}, "
                f"resolution={self.resolution}, origin={self.origin!r})")


class MergeState:
    """
    Index-aligned inputs of one merge: grid images, their transforms and the
    grids' metadata. Transforms are replaced as a whole, never patched.
    """

    def __init__(
        self,
        images: Optional[List[np.ndarray]] = None,
        transforms: Optional[List[Optional[np.ndarray]]] = None,
        grids: Optional[List[Optional[OccupancyGrid]]] = None
    ):
        self.images = list(images) if images is not None else []
        self.transforms = list(transforms) if transforms is not None else []
        self.grids = list(grids) if grids is not None else []

    def __len__(self) -> int:
        return len(self.images)

    def check_consistent(self):
        """Raise if the three lists are not index-aligned"""
        if len(self.images) != len(self.transforms) or len(self.images) != len(self.grids):
            raise ValueError(
                f"Merge state lists differ in length: images={len(self.images)}, "
                f"transforms={len(self.transforms)}, grids={len(self.grids)}"
            )
