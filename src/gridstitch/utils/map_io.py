"""
Reading and writing grids in the map_server format
(YAML metadata next to a PGM/PNG image)
"""

from pathlib import Path
from typing import Union
import logging
import numpy as np
import yaml
from PIL import Image

from gridstitch.core.grid import FREE_CELL, OCCUPIED_CELL, UNKNOWN_CELL, OccupancyGrid, Pose2D

logger = logging.getLogger(__name__)

# Pixel values written by map_saver
SAVED_FREE = 254
SAVED_OCCUPIED = 0
SAVED_UNKNOWN = 205

DEFAULT_OCCUPIED_THRESH = 0.65
DEFAULT_FREE_THRESH = 0.196


class MapLoadError(ValueError):
    """Map metadata or image could not be read"""


def load_map(yaml_path: Union[str, Path], frame_id: str = "") -> OccupancyGrid:
    """
    Load a map_server map as a tri-state occupancy grid

    Args:
        yaml_path: Path to the map YAML file
        frame_id: Frame assigned to the loaded grid

    Returns:
        OccupancyGrid with row 0 at the origin (image is flipped vertically)
    """
    yaml_path = Path(yaml_path)
    try:
        with open(yaml_path, 'r', encoding='utf-8') as f:
            meta = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise MapLoadError(f"Cannot read map metadata {yaml_path}: {e}") from e

    for key in ('image', 'resolution', 'origin'):
        if key not in meta:
            raise MapLoadError(f"Map metadata {yaml_path} is missing '{key}'")

    image_path = Path(meta['image'])
    if not image_path.is_absolute():
        image_path = yaml_path.parent / image_path

    try:
        with Image.open(image_path) as img:
            pixels = np.array(img.convert('L'), dtype=np.float64)
    except OSError as e:
        raise MapLoadError(f"Cannot read map image {image_path}: {e}") from e

    occupied_thresh = float(meta.get('occupied_thresh', DEFAULT_OCCUPIED_THRESH))
    free_thresh = float(meta.get('free_thresh', DEFAULT_FREE_THRESH))
    negate = bool(meta.get('negate', 0))

    occupancy = pixels / 255.0 if negate else (255.0 - pixels) / 255.0

    data = np.full(pixels.shape, UNKNOWN_CELL, dtype=np.int8)
    data[occupancy > occupied_thresh] = OCCUPIED_CELL
    data[occupancy < free_thresh] = FREE_CELL
    # image rows go top-down, grid rows go up from the origin
    data = np.flipud(data).copy()

    origin_values = list(meta['origin']) + [0.0] * 3
    origin = Pose2D.from_xy_yaw(origin_values[0], origin_values[1], origin_values[2])

    grid = OccupancyGrid(data, resolution=float(meta['resolution']), origin=origin, frame_id=frame_id)
    logger.info(f"Loaded map {yaml_path.name}: {grid.width}x{grid.height} at {grid.resolution} m/cell")
    return grid


def save_map(grid: OccupancyGrid, prefix: Union[str, Path]) -> Path:
    """
    Write grid as <prefix>.pgm and <prefix>.yaml

    Returns:
        Path of the written YAML file
    """
    prefix = Path(prefix)
    prefix.parent.mkdir(parents=True, exist_ok=True)
    image_path = prefix.with_suffix('.pgm')
    yaml_path = prefix.with_suffix('.yaml')

    pixels = np.full(grid.data.shape, SAVED_UNKNOWN, dtype=np.uint8)
    pixels[(grid.data >= 0) & (grid.data <= DEFAULT_FREE_THRESH * 100)] = SAVED_FREE
    pixels[grid.data >= DEFAULT_OCCUPIED_THRESH * 100] = SAVED_OCCUPIED
    Image.fromarray(np.ascontiguousarray(np.flipud(pixels))).save(image_path)

    yaw = grid.origin.yaw if grid.origin.is_valid() else 0.0
    meta = {
        'image': image_path.name,
        'resolution': float(grid.resolution),
        'origin': [float(grid.origin.x), float(grid.origin.y), float(yaw)],
        'negate': 0,
        'occupied_thresh': DEFAULT_OCCUPIED_THRESH,
        'free_thresh': DEFAULT_FREE_THRESH
    }
    with open(yaml_path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(meta, f, default_flow_style=None, sort_keys=False)

    logger.info(f"Map saved to {yaml_path}")
    return yaml_path
