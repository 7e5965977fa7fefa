"""
Feature detection on occupancy grid images
ORB, AKAZE and SIFT detectors sharing a common FeatureSet output
"""

import cv2
import numpy as np
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class FeatureSet:
    """Keypoints and descriptors found in one grid image"""

    def __init__(
        self,
        keypoints: Optional[np.ndarray] = None,
        descriptors: Optional[np.ndarray] = None,
        image_shape: tuple = (0, 0),
        binary: bool = True
    ):
        """
        Args:
            keypoints: Nx4 array of (x, y, size, angle)
            descriptors: NxD descriptor matrix, row-aligned with keypoints
            image_shape: (height, width) of the source image
            binary: True for Hamming-distance descriptors (ORB, AKAZE)
        """
        self.keypoints = keypoints if keypoints is not None else np.empty((0, 4), dtype=np.float32)
        self.descriptors = descriptors
        self.image_shape = tuple(image_shape[:2])
        self.binary = binary

    def __len__(self) -> int:
        return len(self.keypoints)

    def is_empty(self) -> bool:
        return len(self.keypoints) == 0 or self.descriptors is None

    def points(self) -> np.ndarray:
        """Nx2 keypoint coordinates"""
        return self.keypoints[:, :2].astype(np.float32)


def _keypoints_to_array(keypoints) -> np.ndarray:
    if len(keypoints) == 0:
        return np.empty((0, 4), dtype=np.float32)
    return np.array([[kp.pt[0], kp.pt[1], kp.size, kp.angle] for kp in keypoints],
                    dtype=np.float32)


class GridFeatureDetector:
    """Base for detectors; handles empty images and response-based capping"""

    binary = True

    def __init__(self, n_features: int = 1500):
        self.n_features = n_features

    def _detect(self, gray: np.ndarray):
        raise NotImplementedError

    def detect_and_compute(self, image: np.ndarray) -> FeatureSet:
        """
        Detect features and compute descriptors

        Args:
            image: Grid image (uint8); may be empty

        Returns:
            FeatureSet, empty when the image is empty or featureless
        """
        if image is None or image.size == 0:
            return FeatureSet(binary=self.binary)

        if len(image.shape) == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image

        keypoints, descriptors = self._detect(gray)

        if keypoints is None or len(keypoints) == 0 or descriptors is None:
            logger.debug(f"No features found in {gray.shape[1]}x{gray.shape[0]} image")
            return FeatureSet(image_shape=gray.shape, binary=self.binary)

        # Limit to max features by response strength
        if len(keypoints) > self.n_features:
            responses = np.array([kp.response for kp in keypoints])
            keep_indices = np.argsort(responses)[::-1][:self.n_features]
            keypoints = [keypoints[i] for i in keep_indices]
            descriptors = descriptors[keep_indices]

        logger.debug(f"Detected {len(keypoints)} features in {gray.shape[1]}x{gray.shape[0]} image")
        return FeatureSet(
            keypoints=_keypoints_to_array(keypoints),
            descriptors=descriptors,
            image_shape=gray.shape,
            binary=self.binary
        )


class ORBDetector(GridFeatureDetector):
    """ORB detector, the default for occupancy grids"""

    def __init__(self, n_features: int = 1500):
        super().__init__(n_features)
        self.orb = cv2.ORB_create(nfeatures=n_features)

    def _detect(self, gray: np.ndarray):
        return self.orb.detectAndCompute(gray, None)


class AKAZEDetector(GridFeatureDetector):
    """AKAZE detector as alternative"""

    def __init__(self, n_features: int = 1500):
        super().__init__(n_features)
        # AKAZE doesn't have nfeatures parameter, capped after detection
        self.akaze = cv2.AKAZE_create()

    def _detect(self, gray: np.ndarray):
        return self.akaze.detectAndCompute(gray, None)


class SIFTDetector(GridFeatureDetector):
    """SIFT detector; float descriptors matched with L2"""

    binary = False

    def __init__(self, n_features: int = 1500):
        super().__init__(n_features)
        self.sift = cv2.SIFT_create(
            nfeatures=n_features,
            contrastThreshold=0.04,
            edgeThreshold=10,
            sigma=1.6
        )

    def _detect(self, gray: np.ndarray):
        return self.sift.detectAndCompute(gray, None)


FEATURE_TYPES = ('orb', 'akaze', 'sift')


def create_feature_detector(feature_type: str = 'orb', n_features: int = 1500) -> GridFeatureDetector:
    """Create feature detector based on method"""
    method = feature_type.lower()
    if method == 'orb':
        return ORBDetector(n_features=n_features)
    elif method == 'akaze':
        return AKAZEDetector(n_features=n_features)
    elif method == 'sift':
        return SIFTDetector(n_features=n_features)
    else:
        logger.warning(f"Unknown detector method {feature_type}, using ORB")
        return ORBDetector(n_features=n_features)
