"""
Conversion between 3x3 similarity transforms and portable planar poses
"""

import math
import numpy as np
from typing import Optional
import logging

from gridstitch.core.grid import Pose2D

logger = logging.getLogger(__name__)


def is_identity(transform: Optional[np.ndarray]) -> bool:
    """
    Check whether a transform is exactly the identity.

    Comparison is bit-exact: an estimated transform that is merely close to
    identity does not count.
    """
    if transform is None or transform.size == 0:
        return False
    return bool(np.array_equal(transform, np.eye(*transform.shape, dtype=transform.dtype)))


def to_pose(transform: Optional[np.ndarray]) -> Pose2D:
    """
    Convert a similarity transform to translation + quaternion.

    The rotation is confined to the plane, so the quaternion reduces to its
    z and w components computed from the half-angle identities. Radicands are
    clamped so that a cosine slightly outside [-1, 1] still yields a pose.

    Args:
        transform: 3x3 matrix or None for unknown

    Returns:
        Pose2D; all zero for an unknown transform
    """
    if transform is None:
        return Pose2D()

    if transform.shape != (3, 3):
        raise ValueError(f"Expected 3x3 transform, got shape {transform.shape}")

    a = float(transform[0, 0])
    b = float(transform[1, 0])

    w = math.sqrt(max(0.0, 2.0 + 2.0 * a)) * 0.5
    z = math.sqrt(max(0.0, 2.0 - 2.0 * a)) * 0.5
    if b < 0.0:
        z = -z

    return Pose2D(
        x=float(transform[0, 2]),
        y=float(transform[1, 2]),
        qx=0.0,
        qy=0.0,
        qz=z,
        qw=w
    )


def from_pose(pose: Pose2D) -> Optional[np.ndarray]:
    """
    Convert a pose back to a 3x3 rigid transform.

    The all-zero quaternion is the 'unknown' marker and maps to None. The
    identity quaternion produces an exact identity matrix.
    """
    if not pose.is_valid():
        return None

    s = 2.0 / (pose.qx * pose.qx + pose.qy * pose.qy + pose.qz * pose.qz + pose.qw * pose.qw)
    a = 1.0 - pose.qy * pose.qy * s - pose.qz * pose.qz * s
    b = pose.qx * pose.qy * s + pose.qz * pose.qw * s

    transform = np.eye(3, dtype=np.float64)
    transform[0, 0] = transform[1, 1] = a
    transform[1, 0] = b
    transform[0, 1] = -b
    transform[0, 2] = pose.x
    transform[1, 2] = pose.y
    return transform
