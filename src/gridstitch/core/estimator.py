"""
Transform estimation for a set of grid images

Finds a similarity transform per image into a shared reference frame. Images
that cannot be related to the biggest group of well-matched images are left
with an unknown (None) transform.
"""

import numpy as np
from typing import Dict, List, Optional, Tuple
import logging

from gridstitch.core.grid import is_empty_image
from gridstitch.ml.feature_pipeline import FeaturePipelineBase
from gridstitch.ml.matcher import PairwiseMatch

logger = logging.getLogger(__name__)


class EstimationResult:
    """
    Outcome of one estimation run.

    `transforms` is None when nothing should change: on failure, and on
    empty input where previously stored transforms are kept as they are.
    """

    def __init__(self, ok: bool, transforms: Optional[List[Optional[np.ndarray]]] = None):
        self.ok = ok
        self.transforms = transforms

    def __bool__(self) -> bool:
        return self.ok

    def __repr__(self) -> str:
        known = None if self.transforms is None else sum(t is not None for t in self.transforms)
        return f"EstimationResult(ok={self.ok}, known_transforms={known})"


def _subset_matches(
    matches: Dict[Tuple[int, int], PairwiseMatch],
    indices: List[int]
) -> Dict[Tuple[int, int], PairwiseMatch]:
    """Re-key matches from original image indices to positions in `indices`"""
    position = {idx: pos for pos, idx in enumerate(indices)}
    subset = {}
    for (i, j), match in matches.items():
        if i in position and j in position:
            subset[(position[i], position[j])] = match
    return subset


class TransformEstimator:
    """Estimate per-image transforms with a pluggable feature pipeline"""

    def __init__(self, pipeline: FeaturePipelineBase):
        self.pipeline = pipeline

    def estimate(self, images: List[np.ndarray], confidence: float) -> EstimationResult:
        """
        Estimate transforms for all images

        Args:
            images: Grid images; any of them may be empty
            confidence: Minimum match confidence linking two images

        Returns:
            EstimationResult with one slot per image on success
        """
        if not images:
            return EstimationResult(True, None)

        logger.debug("computing features")
        features = [self.pipeline.detect(image) for image in images]

        logger.debug("pairwise matching features")
        matches = self.pipeline.match_all(features)

        # use only matches with enough confidence, drop small components
        good_indices = self.pipeline.prune_to_largest_component(features, matches, confidence)

        # No usable cross-grid alignment. The first non-empty grid becomes the
        # reference frame so that a grid that never arrived is not chosen.
        if len(good_indices) == 1:
            transforms = [None] * len(images)
            for i, image in enumerate(images):
                if not is_empty_image(image):
                    transforms[i] = np.eye(3, dtype=np.float64)
                    break
            logger.info("No matches between grids, using first non-empty grid as reference")
            return EstimationResult(True, transforms)

        subset_features = [features[i] for i in good_indices]
        subset_matches = _subset_matches(matches, good_indices)

        logger.debug("calculating transforms in global reference frame")
        ok, subset_transforms = self.pipeline.estimate_global(subset_features, subset_matches)
        if not ok:
            logger.warning("Global transform estimation failed")
            return EstimationResult(False, None)

        logger.debug("optimizing global transforms")
        if not self.pipeline.refine(subset_features, subset_matches, subset_transforms, confidence):
            logger.warning("Bundle adjusting failed. Could not estimate transforms.")
            return EstimationResult(False, None)

        transforms = [None] * len(images)
        for pos, idx in enumerate(good_indices):
            # refinement may run in single precision
            transforms[idx] = np.asarray(subset_transforms[pos], dtype=np.float64)

        logger.info(f"Estimated transforms for {len(good_indices)}/{len(images)} grids")
        return EstimationResult(True, transforms)
