"""
Merging pipeline: from individual occupancy grids to one merged grid

Workflow:
1. feed() grids from all agents
2. estimate_transforms() from feature matches, or set_transforms() from
   known initial poses
3. compose_grids() warps every alignable grid into the reference frame,
   composites them, fixes resolution and origin and clears agent footprints
4. get_transforms() reports each grid's pose in the reference frame
"""

import numpy as np
from typing import List, Optional, Tuple
import logging

from gridstitch.core.agent_masker import AgentMasker
from gridstitch.core.compositor import GridCompositor
from gridstitch.core.estimator import TransformEstimator
from gridstitch.core.grid import MergeState, OccupancyGrid, Pose2D, empty_image, is_empty_image
from gridstitch.core.pose_codec import from_pose, is_identity, to_pose
from gridstitch.core.warper import GridWarper, WarpSizeError
from gridstitch.ml.feature_pipeline import FeaturePipelineBase, OpenCVFeaturePipeline
from gridstitch.utils.config import MergeConfig

logger = logging.getLogger(__name__)


def select_resolution(
    transforms: List[Optional[np.ndarray]],
    grids: List[Optional[OccupancyGrid]]
) -> float:
    """
    Resolution of the merged grid.

    The grid whose transform is exactly identity is the reference frame and
    its resolution wins (this is what estimated transforms produce). Without
    one, the last grid that has any transform is used; with known initial
    poses all resolutions are expected to agree anyway.

    Returns:
        Resolution, or 0.0 when none could be determined
    """
    resolution = 0.0
    any_resolution = 0.0
    for transform, grid in zip(transforms, grids):
        if transform is None or grid is None:
            continue
        if is_identity(transform):
            resolution = grid.resolution
            break
        any_resolution = grid.resolution

    if resolution <= 0.0:
        resolution = any_resolution
    return resolution


def reconcile_origin(
    transform: np.ndarray,
    bbox: Tuple[int, int, int, int],
    resolution: float
) -> Pose2D:
    """
    Origin of the merged grid from the first grid's transform and the
    placement of its warped image.
    """
    x = -transform[0, 2] - bbox[0]
    y = -transform[1, 2] - bbox[1]
    return Pose2D(x=x * resolution, y=y * resolution, qw=1.0)


def compose_grids(
    state: MergeState,
    warper: GridWarper,
    compositor: GridCompositor,
    masker: Optional[AgentMasker] = None
) -> Optional[OccupancyGrid]:
    """
    Merge all grids that have both an image and a transform.

    A grid whose transform would warp it to an unreasonable size is skipped
    with a warning.

    Args:
        state: Index-aligned images, transforms and grids
        warper: Warps one grid image into the reference frame
        compositor: Merges warped images into one cell array
        masker: Optional agent masker applied to the result

    Returns:
        Merged grid, or None when there is nothing to merge yet
    """
    state.check_consistent()

    if not state.images:
        logger.debug("no map images")
        return None

    logger.debug("warping grids")
    warped_images = []
    bboxes = []
    first_bbox = None
    for i, (image, transform) in enumerate(zip(state.images, state.transforms)):
        if transform is None or is_empty_image(image):
            continue
        try:
            warped, bbox = warper.warp(image, transform)
        except WarpSizeError as e:
            logger.warning(f"Skipping grid {i}: {e}")
            continue
        warped_images.append(warped)
        bboxes.append(bbox)
        if i == 0:
            first_bbox = bbox

    if not warped_images:
        logger.debug("no grids could be warped")
        return None

    logger.debug("compositing result grid")
    result = OccupancyGrid(compositor.compose(warped_images, bboxes), origin=Pose2D(qw=1.0))

    result.resolution = select_resolution(state.transforms, state.grids)
    if result.resolution <= 0.0:
        logger.warning("Could not determine resolution of merged grid")

    # the first grid anchors the merged grid's origin
    first_grid = state.grids[0]
    if first_bbox is not None and first_grid is not None:
        result.origin = reconcile_origin(state.transforms[0], first_bbox, first_grid.resolution)
    else:
        logger.debug("first grid has no transform, origin left at default")

    if masker is not None:
        masker.mask(result)

    logger.info(f"Merged {len(warped_images)}/{len(state.images)} grids into "
                f"{result.width}x{result.height} at {result.resolution} m/cell")
    return result


class MergingPipeline:
    """Estimate transforms between occupancy grids and merge them"""

    def __init__(
        self,
        config: Optional[MergeConfig] = None,
        feature_pipeline: Optional[FeaturePipelineBase] = None,
        warper: Optional[GridWarper] = None,
        compositor: Optional[GridCompositor] = None,
        masker: Optional[AgentMasker] = None
    ):
        """
        Args:
            config: Merge settings (defaults if None)
            feature_pipeline: Correspondence source; OpenCV features if None
            warper: Grid warper; GridWarper if None
            compositor: Grid compositor; GridCompositor if None
            masker: Agent masker applied to merged grids; none if None
        """
        self.config = config or MergeConfig()
        self.feature_pipeline = feature_pipeline or self._create_feature_pipeline(self.config.feature_type)
        self.warper = warper or GridWarper()
        self.compositor = compositor or GridCompositor()
        self.masker = masker
        self.state = MergeState()

        # agent settings in the config only configure masking through an AgentMasker
        if self.config.agent_frames and self.masker is None:
            logger.warning(f"Agent frames {self.config.agent_frames} are configured but no masker "
                           f"was given, agent footprints will not be cleared")

    def _create_feature_pipeline(self, feature_type: str) -> OpenCVFeaturePipeline:
        return OpenCVFeaturePipeline(
            feature_type=feature_type,
            max_features=self.config.max_features,
            ratio_threshold=self.config.ratio_threshold
        )

    def feed(self, grids: List[Optional[OccupancyGrid]]):
        """
        Replace the input grids.

        Grids that never arrived may be passed as None or as empty grids.
        Transforms are kept while the number of grids stays the same and
        reset to unknown otherwise.
        """
        images = []
        for grid in grids:
            if grid is None or grid.is_empty():
                images.append(empty_image())
            else:
                images.append(grid.to_image())

        transforms = self.state.transforms
        if len(transforms) != len(grids):
            transforms = [None] * len(grids)

        self.state = MergeState(images, transforms, list(grids))
        logger.debug(f"Fed {len(grids)} grids ({sum(not is_empty_image(i) for i in images)} non-empty)")

    def estimate_transforms(
        self,
        feature_type: Optional[str] = None,
        confidence: Optional[float] = None
    ) -> bool:
        """
        Estimate transforms between the fed grids.

        On success the stored transforms are replaced as a whole; on failure
        they are left as they were. With no grids fed, nothing changes and
        the call succeeds.
        """
        if confidence is None:
            confidence = self.config.confidence

        pipeline = self.feature_pipeline
        if (feature_type is not None and isinstance(pipeline, OpenCVFeaturePipeline)
                and feature_type != pipeline.feature_type):
            pipeline = self._create_feature_pipeline(feature_type)
            self.feature_pipeline = pipeline

        result = TransformEstimator(pipeline).estimate(self.state.images, confidence)
        if result.ok and result.transforms is not None:
            self.state.transforms = result.transforms
        return result.ok

    def set_transforms(self, poses: List[Pose2D]) -> bool:
        """
        Use known poses instead of estimated transforms.

        A pose with all-zero quaternion marks an unknown transform.

        Returns:
            False (state unchanged) when the number of poses does not match
        """
        if len(poses) != len(self.state.images):
            logger.warning(f"Got {len(poses)} poses for {len(self.state.images)} grids")
            return False
        self.state.transforms = [from_pose(pose) for pose in poses]
        return True

    def compose_grids(self) -> Optional[OccupancyGrid]:
        """Merge the fed grids with the current transforms"""
        return compose_grids(self.state, self.warper, self.compositor, self.masker)

    def get_transforms(self) -> List[Pose2D]:
        """Pose of every grid in the reference frame (all zero if unknown)"""
        return [to_pose(transform) for transform in self.state.transforms]
