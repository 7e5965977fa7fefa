"""
Pairwise feature matching with ratio test, RANSAC similarity fit
and confidence scoring
"""

import cv2
import numpy as np
from typing import Dict, List, Optional, Tuple
import logging

from gridstitch.ml.feature_detector import FeatureSet

logger = logging.getLogger(__name__)

# Pairs scoring above this are near-duplicates and carry no extra information
SELF_MATCH_CONFIDENCE = 3.0
MIN_MATCHES = 6


class PairwiseMatch:
    """Correspondences between two feature sets"""

    def __init__(
        self,
        src_idx: int,
        dst_idx: int,
        confidence: float = 0.0,
        num_matches: int = 0,
        num_inliers: int = 0,
        H: Optional[np.ndarray] = None,
        src_pts: Optional[np.ndarray] = None,
        dst_pts: Optional[np.ndarray] = None
    ):
        """
        Args:
            src_idx: Index of the source feature set
            dst_idx: Index of the destination feature set
            confidence: Match confidence (0 = unusable)
            num_matches: Matches surviving the ratio test
            num_inliers: Matches consistent with H
            H: 3x3 similarity mapping source pixels onto destination pixels
            src_pts: Mx2 inlier points in the source image
            dst_pts: Mx2 inlier points in the destination image
        """
        self.src_idx = src_idx
        self.dst_idx = dst_idx
        self.confidence = confidence
        self.num_matches = num_matches
        self.num_inliers = num_inliers
        self.H = H
        self.src_pts = src_pts if src_pts is not None else np.empty((0, 2), dtype=np.float32)
        self.dst_pts = dst_pts if dst_pts is not None else np.empty((0, 2), dtype=np.float32)

    def __repr__(self) -> str:
        return (f"PairwiseMatch({self.src_idx}->{self.dst_idx}, "
                f"confidence={self.confidence:.3f}, inliers={self.num_inliers})")


class FeatureMatcher:
    """Brute-force kNN matcher verified by a partial affine (similarity) fit"""

    def __init__(
        self,
        ratio_threshold: float = 0.8,
        ransac_threshold: float = 3.0
    ):
        """
        Args:
            ratio_threshold: Lowe's ratio test threshold
            ransac_threshold: Reprojection threshold (pixels) for RANSAC
        """
        self.ratio_threshold = ratio_threshold
        self.ransac_threshold = ransac_threshold

    def match(self, features1: FeatureSet, features2: FeatureSet,
              src_idx: int = 0, dst_idx: int = 1) -> PairwiseMatch:
        """
        Match two feature sets

        Returns:
            PairwiseMatch; confidence 0 when the pair cannot be related
        """
        result = PairwiseMatch(src_idx, dst_idx)
        if features1.is_empty() or features2.is_empty():
            return result
        if len(features1) < 2 or len(features2) < 2:
            return result

        descriptors1 = features1.descriptors
        descriptors2 = features2.descriptors
        if descriptors1.shape[1] != descriptors2.shape[1]:
            logger.warning(f"Descriptor dimension mismatch: {descriptors1.shape[1]} vs {descriptors2.shape[1]}")
            return result

        if features1.binary:
            matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
        else:
            matcher = cv2.BFMatcher(cv2.NORM_L2, crossCheck=False)
            descriptors1 = descriptors1.astype(np.float32)
            descriptors2 = descriptors2.astype(np.float32)

        try:
            knn = matcher.knnMatch(descriptors1, descriptors2, k=2)
        except cv2.error as e:
            logger.warning(f"Matching ({src_idx}, {dst_idx}) failed: {e}")
            return result

        # Apply Lowe's ratio test
        good_matches = []
        for match_pair in knn:
            if len(match_pair) == 2:
                m, n = match_pair
                if m.distance < self.ratio_threshold * n.distance:
                    good_matches.append(m)

        result.num_matches = len(good_matches)
        if len(good_matches) < MIN_MATCHES:
            return result

        pts1 = features1.points()[[m.queryIdx for m in good_matches]]
        pts2 = features2.points()[[m.trainIdx for m in good_matches]]

        similarity, inliers = cv2.estimateAffinePartial2D(
            pts1, pts2,
            method=cv2.RANSAC,
            ransacReprojThreshold=self.ransac_threshold,
            confidence=0.99,
            maxIters=2000
        )
        if similarity is None or inliers is None:
            logger.debug(f"Match ({src_idx}, {dst_idx}): no similarity transform found")
            return result

        inlier_mask = inliers.ravel().astype(bool)
        num_inliers = int(np.sum(inlier_mask))
        confidence = num_inliers / (8 + 0.3 * len(good_matches))

        # Near-identical images give no additional information
        if confidence > SELF_MATCH_CONFIDENCE:
            confidence = 0.0

        result.confidence = confidence
        result.num_inliers = num_inliers
        result.H = np.vstack([similarity, [0, 0, 1]]).astype(np.float64)
        result.src_pts = pts1[inlier_mask]
        result.dst_pts = pts2[inlier_mask]
        return result

    def match_all(self, features: List[FeatureSet]) -> Dict[Tuple[int, int], PairwiseMatch]:
        """
        Match every ordered pair of feature sets

        Returns:
            Dict mapping (i, j) -> PairwiseMatch for i != j
        """
        matches = {}
        n = len(features)
        for i in range(n):
            for j in range(i + 1, n):
                forward = self.match(features[i], features[j], i, j)
                matches[(i, j)] = forward
                matches[(j, i)] = invert_match(forward)
                if forward.confidence > 0:
                    logger.debug(f"Match ({i}, {j}): {forward.num_inliers}/{forward.num_matches} inliers, "
                                 f"confidence={forward.confidence:.2f}")
        return matches


def invert_match(match: PairwiseMatch) -> PairwiseMatch:
    """Same correspondences seen from the destination side"""
    H_inv = None
    if match.H is not None:
        try:
            H_inv = np.linalg.inv(match.H)
        except np.linalg.LinAlgError:
            logger.warning(f"Could not invert transform for ({match.dst_idx}, {match.src_idx})")
    return PairwiseMatch(
        src_idx=match.dst_idx,
        dst_idx=match.src_idx,
        confidence=match.confidence if H_inv is not None else 0.0,
        num_matches=match.num_matches,
        num_inliers=match.num_inliers,
        H=H_inv,
        src_pts=match.dst_pts,
        dst_pts=match.src_pts
    )
