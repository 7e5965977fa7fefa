"""
Tests for transform estimation over a set of grid images.
"""

import numpy as np

from conftest import FakeFeaturePipeline, translation
from gridstitch.core.estimator import TransformEstimator
from gridstitch.core.grid import empty_image
from gridstitch.core.pose_codec import is_identity


def image(value: int = 0) -> np.ndarray:
    return np.full((8, 8), value, dtype=np.uint8)


class TestEmptyInput:

    def test_no_images_succeeds_without_transforms(self):
        """Nothing to estimate: success, stored transforms stay as they are."""
        pipeline = FakeFeaturePipeline(component=[])
        result = TransformEstimator(pipeline).estimate([], 1.0)

        assert result.ok
        assert result.transforms is None
        assert pipeline.calls == []


class TestSingleSurvivor:
    """Only one image survives pruning."""

    def test_first_non_empty_image_becomes_reference(self):
        pipeline = FakeFeaturePipeline(component=[0])
        images = [empty_image(), image(), image()]

        result = TransformEstimator(pipeline).estimate(images, 1.0)

        assert result.ok
        assert result.transforms[0] is None
        assert is_identity(result.transforms[1])
        assert result.transforms[1].dtype == np.float64
        assert result.transforms[2] is None
        assert 'estimate_global' not in pipeline.calls

    def test_all_images_empty(self):
        pipeline = FakeFeaturePipeline(component=[0])
        result = TransformEstimator(pipeline).estimate([empty_image(), empty_image()], 1.0)

        assert result.ok
        assert result.transforms == [None, None]

    def test_surviving_index_does_not_pick_reference(self):
        """Reference is the first non-empty image, not the survivor."""
        pipeline = FakeFeaturePipeline(component=[2])
        result = TransformEstimator(pipeline).estimate([image(), image(), image()], 1.0)

        assert is_identity(result.transforms[0])
        assert result.transforms[1] is None
        assert result.transforms[2] is None


class TestComponentEstimation:
    """Several images survive pruning."""

    def test_transforms_scattered_to_original_indices(self):
        shift = translation(5.0, -2.0)
        pipeline = FakeFeaturePipeline(component=[0, 2], global_transforms=[np.eye(3), shift])

        result = TransformEstimator(pipeline).estimate([image(), image(), image()], 1.0)

        assert result.ok
        assert is_identity(result.transforms[0])
        assert result.transforms[1] is None
        np.testing.assert_allclose(result.transforms[2], shift)

    def test_results_are_double_precision(self):
        pipeline = FakeFeaturePipeline(component=[0, 1],
                                       global_transforms=[np.eye(3), translation(1.0, 1.0)])
        result = TransformEstimator(pipeline).estimate([image(), image()], 1.0)

        assert all(t.dtype == np.float64 for t in result.transforms)

    def test_confidence_is_passed_through(self):
        pipeline = FakeFeaturePipeline(component=[0, 1],
                                       global_transforms=[np.eye(3), np.eye(3)])
        TransformEstimator(pipeline).estimate([image(), image()], 0.4)

        assert pipeline.prune_threshold == 0.4
        assert pipeline.refine_threshold == 0.4

    def test_steps_run_in_order(self):
        pipeline = FakeFeaturePipeline(component=[0, 1],
                                       global_transforms=[np.eye(3), np.eye(3)])
        TransformEstimator(pipeline).estimate([image(), image()], 1.0)

        assert pipeline.calls == ['detect', 'detect', 'match_all', 'prune', 'estimate_global', 'refine']

    def test_global_estimation_failure(self):
        pipeline = FakeFeaturePipeline(component=[0, 1], global_ok=False)
        result = TransformEstimator(pipeline).estimate([image(), image()], 1.0)

        assert not result.ok
        assert result.transforms is None
        assert 'refine' not in pipeline.calls

    def test_refinement_failure(self, caplog):
        pipeline = FakeFeaturePipeline(component=[0, 1],
                                       global_transforms=[np.eye(3), translation(3.0, 0.0)],
                                       refine_ok=False)
        result = TransformEstimator(pipeline).estimate([image(), image()], 1.0)

        assert not result
        assert result.transforms is None
        assert "Bundle adjusting failed" in caplog.text
