"""
Compositing of warped grid fragments into one grid
"""

import numpy as np
from typing import List, Tuple
import logging

from gridstitch.core.grid import UNKNOWN_CELL

logger = logging.getLogger(__name__)


def union_bbox(bboxes: List[Tuple[int, int, int, int]]) -> Tuple[int, int, int, int]:
    """Bounding box containing all given boxes"""
    x_min = min(b[0] for b in bboxes)
    y_min = min(b[1] for b in bboxes)
    x_max = max(b[2] for b in bboxes)
    y_max = max(b[3] for b in bboxes)
    return x_min, y_min, x_max, y_max


class GridCompositor:
    """
    Merge warped grids cell by cell.

    Cells are compared as signed values, so occupied (100) wins over free
    (0) which wins over unknown (-1).
    """

    def compose(
        self,
        warped_images: List[np.ndarray],
        bboxes: List[Tuple[int, int, int, int]]
    ) -> np.ndarray:
        """
        Args:
            warped_images: uint8 grid images as produced by GridWarper
            bboxes: (x_min, y_min, x_max, y_max) of each image

        Returns:
            int8 cell array covering the union of all boxes
        """
        if not warped_images:
            raise ValueError("No grids to compose")
        if len(warped_images) != len(bboxes):
            raise ValueError(f"{len(warped_images)} grids but {len(bboxes)} bounding boxes")

        x_min, y_min, x_max, y_max = union_bbox(bboxes)
        result = np.full((y_max - y_min, x_max - x_min), UNKNOWN_CELL, dtype=np.int8)

        for warped, (bx_min, by_min, _, _) in zip(warped_images, bboxes):
            cells = np.ascontiguousarray(warped).view(np.int8)
            h, w = cells.shape[:2]
            top = by_min - y_min
            left = bx_min - x_min
            roi = result[top:top + h, left:left + w]
            np.maximum(roi, cells, out=roi)

        logger.debug(f"Composed {len(warped_images)} grids into {result.shape[1]}x{result.shape[0]}")
        return result
