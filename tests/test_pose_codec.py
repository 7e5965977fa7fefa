"""
Tests for conversion between transforms and poses.
"""

import math

import numpy as np
import pytest

from gridstitch.core.grid import Pose2D
from gridstitch.core.pose_codec import from_pose, is_identity, to_pose


def rotation(theta: float, tx: float = 0.0, ty: float = 0.0, scale: float = 1.0) -> np.ndarray:
    c = scale * math.cos(theta)
    s = scale * math.sin(theta)
    return np.array([[c, -s, tx], [s, c, ty], [0.0, 0.0, 1.0]])


class TestIsIdentity:
    """Tests for exact identity detection."""

    def test_exact_identity(self):
        assert is_identity(np.eye(3))

    def test_float32_identity(self):
        assert is_identity(np.eye(3, dtype=np.float32))

    def test_near_identity_is_not_identity(self):
        """Estimated transforms that are merely close do not count."""
        t = np.eye(3)
        t[0, 2] = 1e-12
        assert not is_identity(t)

    def test_none_and_empty(self):
        assert not is_identity(None)
        assert not is_identity(np.empty((0, 0)))


class TestToPose:
    """Tests for transform -> pose conversion."""

    def test_unknown_transform_gives_zero_pose(self):
        pose = to_pose(None)
        assert pose == Pose2D()
        assert not pose.is_valid()

    def test_identity(self):
        pose = to_pose(np.eye(3))
        assert pose.x == 0.0 and pose.y == 0.0
        assert pose.qz == 0.0
        assert pose.qw == 1.0

    def test_translation_is_copied(self):
        pose = to_pose(rotation(0.0, tx=12.5, ty=-3.0))
        assert pose.x == 12.5
        assert pose.y == -3.0

    @pytest.mark.parametrize("theta", [0.3, 1.2, math.pi / 2, 2.5])
    def test_positive_rotation(self, theta):
        pose = to_pose(rotation(theta))
        assert pose.qz == pytest.approx(math.sin(theta / 2))
        assert pose.qw == pytest.approx(math.cos(theta / 2))

    def test_negative_rotation_flips_z(self):
        """Sign of z follows the sine term of the matrix."""
        pose = to_pose(rotation(-0.7))
        assert pose.qz == pytest.approx(-math.sin(0.35))
        assert pose.qw == pytest.approx(math.cos(0.35))
        assert pose.qx == 0.0 and pose.qy == 0.0

    def test_half_turn(self):
        pose = to_pose(rotation(math.pi))
        assert pose.qw == pytest.approx(0.0, abs=1e-7)
        assert abs(pose.qz) == pytest.approx(1.0)

    def test_cosine_slightly_above_one_does_not_fail(self):
        t = np.eye(3)
        t[0, 0] = t[1, 1] = 1.0 + 1e-9
        pose = to_pose(t)
        assert pose.qz == 0.0
        assert math.isfinite(pose.qw)

    def test_cosine_slightly_below_minus_one_does_not_fail(self):
        t = np.eye(3)
        t[0, 0] = t[1, 1] = -1.0 - 1e-9
        pose = to_pose(t)
        assert pose.qw == 0.0
        assert pose.qz == pytest.approx(1.0)

    def test_rejects_wrong_shape(self):
        with pytest.raises(ValueError):
            to_pose(np.eye(2))


class TestFromPose:
    """Tests for pose -> transform conversion."""

    def test_unknown_pose_gives_none(self):
        assert from_pose(Pose2D()) is None

    def test_identity_pose_gives_exact_identity(self):
        transform = from_pose(Pose2D(qw=1.0))
        assert is_identity(transform)

    def test_translation(self):
        transform = from_pose(Pose2D(x=1.5, y=-2.0, qw=1.0))
        assert transform[0, 2] == 1.5
        assert transform[1, 2] == -2.0

    @pytest.mark.parametrize("theta", [-2.0, -0.4, 0.0, 0.9, 3.0])
    def test_rigid_rotation_roundtrip(self, theta):
        expected = rotation(theta, tx=4.0, ty=-1.0)
        transform = from_pose(to_pose(expected))
        np.testing.assert_allclose(transform, expected, atol=1e-9)

    def test_scale_is_lost(self):
        """Poses carry rotation only, the scale of a similarity is dropped."""
        transform = from_pose(to_pose(rotation(0.5, scale=2.0)))
        assert np.hypot(transform[0, 0], transform[1, 0]) == pytest.approx(1.0)

    def test_non_normalized_quaternion(self):
        transform = from_pose(Pose2D(qz=0.0, qw=2.0))
        np.testing.assert_allclose(transform, np.eye(3))
