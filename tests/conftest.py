import numpy as np
import pytest
from typing import Dict, List, Optional

from gridstitch.core.grid import OccupancyGrid, Pose2D, is_empty_image
from gridstitch.core.pose_resolver import PoseLookupTimeout, PoseResolver
from gridstitch.ml.feature_detector import FeatureSet
from gridstitch.ml.feature_pipeline import FeaturePipelineBase


# =============================================================================
# Test doubles
# =============================================================================

class FakeFeaturePipeline(FeaturePipelineBase):
    """
    Deterministic feature pipeline.

    The surviving component and the global transforms are fixed up front so
    estimation logic can be tested without real feature matching.
    """

    def __init__(
        self,
        component: List[int],
        global_transforms: Optional[List[np.ndarray]] = None,
        global_ok: bool = True,
        refine_ok: bool = True
    ):
        self.component = list(component)
        self.global_transforms = global_transforms or []
        self.global_ok = global_ok
        self.refine_ok = refine_ok
        self.calls = []
        self.prune_threshold = None
        self.refine_threshold = None

    def detect(self, image):
        self.calls.append('detect')
        if is_empty_image(image):
            return FeatureSet()
        return FeatureSet(
            keypoints=np.zeros((1, 4), dtype=np.float32),
            descriptors=np.zeros((1, 32), dtype=np.uint8),
            image_shape=image.shape
        )

    def match_all(self, features):
        self.calls.append('match_all')
        return {}

    def prune_to_largest_component(self, features, matches, threshold):
        self.calls.append('prune')
        self.prune_threshold = threshold
        return list(self.component)

    def estimate_global(self, features, matches):
        self.calls.append('estimate_global')
        if not self.global_ok:
            return False, []
        return True, [t.copy() for t in self.global_transforms]

    def refine(self, features, matches, transforms, threshold):
        self.calls.append('refine')
        self.refine_threshold = threshold
        if not self.refine_ok:
            return False
        # refinement hands back single precision like the bundle adjuster
        for i, t in enumerate(transforms):
            transforms[i] = t.astype(np.float32)
        return True


class RecordingResolver(PoseResolver):
    """Resolver with fixed poses; frames without a pose time out"""

    def __init__(self, poses: Dict[str, Pose2D]):
        self.poses = dict(poses)
        self.requests = []

    def resolve(self, frame_id, timeout):
        self.requests.append((frame_id, timeout))
        if frame_id not in self.poses:
            raise PoseLookupTimeout(f"frame '{frame_id}' not available")
        return self.poses[frame_id]


def translation(tx: float, ty: float) -> np.ndarray:
    """Transform mapping reference pixels to grid pixels by a pure shift"""
    transform = np.eye(3, dtype=np.float64)
    transform[0, 2] = tx
    transform[1, 2] = ty
    return transform


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def numpy_seed():
    """Set numpy random seed for reproducible tests."""
    np.random.seed(42)
    yield


@pytest.fixture
def free_grid():
    """4x4 grid of free cells at 5 cm resolution"""
    return OccupancyGrid(np.zeros((4, 4), dtype=np.int8), resolution=0.05,
                         origin=Pose2D.from_xy_yaw(0.0, 0.0))


@pytest.fixture
def occupied_corner_grid():
    """4x4 unknown grid with one occupied cell at (x=1, y=2), 10 cm resolution"""
    data = np.full((4, 4), -1, dtype=np.int8)
    data[2, 1] = 100
    return OccupancyGrid(data, resolution=0.1, origin=Pose2D.from_xy_yaw(0.0, 0.0))


@pytest.fixture
def room_image(numpy_seed):
    """
    Grid image with walls and scattered obstacles, as feature detectors see
    it: free 0, occupied 100, unknown 255.
    """
    image = np.full((200, 200), 255, dtype=np.uint8)
    image[20:180, 20:180] = 0
    image[20:23, 20:180] = 100
    image[177:180, 20:180] = 100
    image[20:180, 20:23] = 100
    image[20:180, 177:180] = 100
    for _ in range(25):
        x, y = np.random.randint(30, 160, size=2)
        w, h = np.random.randint(3, 15, size=2)
        image[y:y + h, x:x + w] = 100
    return image
