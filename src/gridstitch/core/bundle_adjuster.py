"""
Bundle adjustment of similarity transforms between grid images

Jointly refines every non-reference transform so that matched inlier points
land on the same spot of the reference frame. The reference image is held
fixed, which keeps its transform exactly identity.
"""

import numpy as np
from typing import List, Dict, Tuple, Optional
import logging
from scipy.optimize import least_squares

from gridstitch.core.pose_codec import is_identity
from gridstitch.ml.feature_detector import FeatureSet
from gridstitch.ml.matcher import PairwiseMatch

logger = logging.getLogger(__name__)


def _transform_to_params(transform: np.ndarray) -> np.ndarray:
    """[tx, ty, scale, rotation] of the grid -> reference mapping"""
    to_reference = np.linalg.inv(transform.astype(np.float64))
    tx = to_reference[0, 2]
    ty = to_reference[1, 2]
    scale = np.sqrt(to_reference[0, 0]**2 + to_reference[1, 0]**2)
    rotation = np.arctan2(to_reference[1, 0], to_reference[0, 0])
    return np.array([tx, ty, scale, rotation], dtype=np.float32)


def _params_to_transform(params: np.ndarray) -> np.ndarray:
    tx, ty, scale, rotation = params
    cos_r = np.cos(rotation)
    sin_r = np.sin(rotation)
    to_reference = np.array([
        [scale * cos_r, -scale * sin_r, tx],
        [scale * sin_r, scale * cos_r, ty],
        [0.0, 0.0, 1.0]
    ], dtype=np.float64)
    return np.linalg.inv(to_reference).astype(np.float32)


class BundleAdjuster:
    """
    Global optimisation of all transforms in a connected component.

    Each non-reference image is parametrised by translation, uniform scale
    and rotation of its mapping into the reference frame. Parameters are
    handled in single precision; callers upconvert the results.
    """

    def __init__(
        self,
        conf_thresh: float = 1.0,
        max_iterations: int = 100,
        tolerance: float = 1e-6,
        robust_loss: str = 'huber'
    ):
        """
        Args:
            conf_thresh: Only matches with at least this confidence contribute
            max_iterations: Maximum optimization iterations (per parameter)
            tolerance: Convergence tolerance
            robust_loss: Loss function ('huber', 'cauchy', 'soft_l1', 'linear')
        """
        self.conf_thresh = conf_thresh
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.robust_loss = robust_loss
        self.last_stats: Dict = {}

    def set_conf_thresh(self, conf_thresh: float):
        self.conf_thresh = conf_thresh

    def _collect_observations(
        self,
        matches: Dict[Tuple[int, int], PairwiseMatch]
    ) -> Optional[Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]]:
        idx_i, idx_j, pts_i, pts_j = [], [], [], []
        for (i, j), match in matches.items():
            # each pair is stored in both directions, use it once
            if i >= j or match.H is None or match.confidence < self.conf_thresh:
                continue
            count = len(match.src_pts)
            if count == 0:
                continue
            idx_i.append(np.full(count, i, dtype=np.int64))
            idx_j.append(np.full(count, j, dtype=np.int64))
            pts_i.append(np.asarray(match.src_pts, dtype=np.float64))
            pts_j.append(np.asarray(match.dst_pts, dtype=np.float64))

        if not idx_i:
            return None
        return (np.concatenate(idx_i), np.concatenate(idx_j),
                np.concatenate(pts_i), np.concatenate(pts_j))

    @staticmethod
    def _to_reference(params: np.ndarray, idx: np.ndarray, pts: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        tx, ty, scale, rotation = params[idx].T
        cos_r = np.cos(rotation)
        sin_r = np.sin(rotation)
        global_x = scale * (cos_r * pts[:, 0] - sin_r * pts[:, 1]) + tx
        global_y = scale * (sin_r * pts[:, 0] + cos_r * pts[:, 1]) + ty
        return global_x, global_y

    def __call__(
        self,
        features: List[FeatureSet],
        matches: Dict[Tuple[int, int], PairwiseMatch],
        transforms: List[np.ndarray]
    ) -> bool:
        """
        Refine transforms in place.

        Args:
            features: Feature sets of the component (index-aligned)
            matches: Pairwise matches keyed by component indices
            transforms: Initial transforms, overwritten on success

        Returns:
            True on success; transforms are left untouched on failure
        """
        n = len(transforms)
        if n != len(features):
            raise ValueError(f"{len(features)} feature sets but {n} transforms")
        if n < 2:
            return True

        ref_idx = next((i for i, t in enumerate(transforms) if is_identity(t)), 0)
        free_idx = [i for i in range(n) if i != ref_idx]

        observations = self._collect_observations(matches)
        if observations is None:
            logger.warning("No observations with sufficient confidence for bundle adjustment")
            self.last_stats = {'success': False, 'reason': 'Too few observations'}
            return False
        obs_i, obs_j, pts_i, pts_j = observations

        n_params = 4 * len(free_idx)
        if 2 * len(obs_i) < n_params:
            logger.warning(f"Too few observations ({len(obs_i)}) for bundle adjustment")
            self.last_stats = {'success': False, 'reason': 'Too few observations'}
            return False

        try:
            all_params = np.array([_transform_to_params(t) for t in transforms], dtype=np.float64)
        except np.linalg.LinAlgError:
            logger.warning("Initial transforms are singular, cannot run bundle adjustment")
            self.last_stats = {'success': False, 'reason': 'Singular transform'}
            return False
        initial = all_params[free_idx].ravel()

        def residuals(p):
            params = all_params.copy()
            params[free_idx] = p.reshape(-1, 4)
            x_i, y_i = self._to_reference(params, obs_i, pts_i)
            x_j, y_j = self._to_reference(params, obs_j, pts_j)
            return np.concatenate([x_i - x_j, y_i - y_j])

        logger.debug(f"Bundle adjustment over {n} images with {len(obs_i)} observations")

        try:
            result = least_squares(
                residuals,
                initial,
                method='trf',
                loss=self.robust_loss,
                max_nfev=self.max_iterations * len(initial),
                ftol=self.tolerance,
                xtol=self.tolerance
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.error(f"Bundle adjustment failed: {e}")
            self.last_stats = {'success': False, 'reason': str(e)}
            return False

        refined = result.x.reshape(-1, 4).astype(np.float32)
        if not np.all(np.isfinite(refined)) or np.any(refined[:, 2] <= 0):
            logger.warning("Bundle adjustment produced a degenerate transform")
            self.last_stats = {'success': False, 'reason': 'Degenerate result'}
            return False

        initial_cost = 0.5 * float(np.sum(residuals(initial)**2))
        self.last_stats = {
            'success': bool(result.success),
            'iterations': result.nfev,
            'initial_cost': initial_cost,
            'final_cost': float(result.cost),
            'message': result.message
        }
        logger.debug(f"Bundle adjustment complete: cost {initial_cost:.2f} -> {result.cost:.2f}")

        for k, i in enumerate(free_idx):
            transforms[i] = _params_to_transform(refined[k])
        return True
