"""
Tests for bundle adjustment of similarity transforms.
"""

import numpy as np
import pytest

from gridstitch.core.bundle_adjuster import BundleAdjuster
from gridstitch.core.pose_codec import is_identity
from gridstitch.ml.feature_detector import FeatureSet
from gridstitch.ml.matcher import PairwiseMatch, invert_match


def similarity(theta, tx, ty, scale=1.0):
    c = scale * np.cos(theta)
    s = scale * np.sin(theta)
    return np.array([[c, -s, tx], [s, c, ty], [0.0, 0.0, 1.0]])


def apply(transform, pts):
    homogeneous = np.hstack([pts, np.ones((len(pts), 1))])
    return (transform @ homogeneous.T).T[:, :2]


@pytest.fixture
def exact_pair(numpy_seed):
    """Reference image 0 and image 1 related by a known similarity"""
    truth = similarity(0.1, 10.0, -5.0)
    ref_pts = np.random.uniform(0, 100, size=(30, 2))
    match = PairwiseMatch(0, 1, confidence=2.0, num_matches=30, num_inliers=30, H=truth,
                          src_pts=ref_pts.astype(np.float32),
                          dst_pts=apply(truth, ref_pts).astype(np.float32))
    matches = {(0, 1): match, (1, 0): invert_match(match)}
    return truth, matches


class TestBundleAdjuster:

    def test_recovers_perturbed_transform(self, exact_pair):
        truth, matches = exact_pair
        transforms = [np.eye(3), similarity(0.13, 11.5, -3.8, scale=1.02)]

        adjuster = BundleAdjuster()
        assert adjuster([FeatureSet(), FeatureSet()], matches, transforms)

        np.testing.assert_allclose(transforms[1], truth, atol=1e-2)
        assert transforms[1].dtype == np.float32
        assert adjuster.last_stats['final_cost'] <= adjuster.last_stats['initial_cost']

    def test_reference_stays_exact_identity(self, exact_pair):
        _, matches = exact_pair
        transforms = [np.eye(3), similarity(0.05, 8.0, -6.0)]

        BundleAdjuster()([FeatureSet(), FeatureSet()], matches, transforms)

        assert is_identity(transforms[0])

    def test_identity_anywhere_is_kept_fixed(self, exact_pair):
        truth, matches = exact_pair
        inverted = {(1 - i, 1 - j): m for (i, j), m in matches.items()}
        transforms = [similarity(0.13, 11.5, -3.8, scale=1.02), np.eye(3)]

        assert BundleAdjuster()([FeatureSet(), FeatureSet()], inverted, transforms)

        assert is_identity(transforms[1])
        np.testing.assert_allclose(transforms[0], truth, atol=1e-2)

    def test_low_confidence_gives_failure(self, exact_pair):
        _, matches = exact_pair
        start = similarity(0.05, 8.0, -6.0)
        transforms = [np.eye(3), start.copy()]

        adjuster = BundleAdjuster(conf_thresh=5.0)
        assert not adjuster([FeatureSet(), FeatureSet()], matches, transforms)

        np.testing.assert_array_equal(transforms[1], start)
        assert adjuster.last_stats['success'] is False

    def test_single_image_is_trivially_adjusted(self):
        transforms = [np.eye(3)]
        assert BundleAdjuster()([FeatureSet()], {}, transforms)

    def test_mismatched_inputs_rejected(self):
        with pytest.raises(ValueError):
            BundleAdjuster()([FeatureSet()], {}, [np.eye(3), np.eye(3)])
