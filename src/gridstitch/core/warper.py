"""
Warping of grid images into the reference frame
"""

import cv2
import numpy as np
from typing import Tuple
import logging

from gridstitch.core.grid import UNKNOWN_PIXEL

logger = logging.getLogger(__name__)

# 100k cells per side is far beyond any real map
MAX_REASONABLE_SIZE = 100000


class WarpSizeError(ValueError):
    """Warped grid would exceed MAX_REASONABLE_SIZE on a side"""


class GridWarper:
    """Warp a grid image with its transform"""

    def warp(self, image: np.ndarray, transform: np.ndarray) -> Tuple[np.ndarray, Tuple[int, int, int, int]]:
        """
        Warp grid image into the reference frame.

        The transform maps reference pixels to grid pixels, so the image is
        warped with its inverse. Nearest neighbour interpolation keeps cell
        values intact and the border is filled with unknown.

        Returns:
            Tuple of (warped_image, bbox)
            - warped_image: uint8 image covering bbox
            - bbox: (x_min, y_min, x_max, y_max) in reference coordinates
        """
        if transform.shape != (3, 3):
            raise ValueError(f"Expected 3x3 transform, got shape {transform.shape}")

        h, w = image.shape[:2]
        to_reference = np.linalg.inv(transform.astype(np.float64))

        # Calculate output bounds by transforming corners
        corners = np.array([
            [0, 0, 1],
            [w, 0, 1],
            [w, h, 1],
            [0, h, 1]
        ], dtype=np.float64).T

        transformed = to_reference @ corners
        transformed = transformed[:2, :] / transformed[2, :]

        x_min = int(np.floor(np.min(transformed[0])))
        x_max = int(np.ceil(np.max(transformed[0])))
        y_min = int(np.floor(np.min(transformed[1])))
        y_max = int(np.ceil(np.max(transformed[1])))

        output_w = max(1, x_max - x_min)
        output_h = max(1, y_max - y_min)
        if output_w > MAX_REASONABLE_SIZE or output_h > MAX_REASONABLE_SIZE:
            raise WarpSizeError(f"Transform produced unreasonable output size: {output_w}x{output_h}")

        # shift by the top left corner, otherwise the image is cropped
        offset = np.array([
            [1, 0, -x_min],
            [0, 1, -y_min],
            [0, 0, 1]
        ], dtype=np.float64)
        adjusted = offset @ to_reference

        warped = cv2.warpAffine(
            image,
            adjusted[:2, :],
            (output_w, output_h),
            flags=cv2.INTER_NEAREST,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=UNKNOWN_PIXEL
        )

        logger.debug(f"Warped {w}x{h} grid to {output_w}x{output_h} at ({x_min}, {y_min})")
        return warped, (x_min, y_min, x_min + output_w, y_min + output_h)
