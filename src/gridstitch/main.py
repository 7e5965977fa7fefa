#!/usr/bin/env python3
"""
GridStitch - Occupancy grid merging
Main entry point for the command-line tool
"""

import sys
import argparse
import logging
from pathlib import Path

import yaml

from gridstitch.core.agent_masker import AgentMasker
from gridstitch.core.grid import Pose2D
from gridstitch.core.merging_pipeline import MergingPipeline
from gridstitch.core.pose_resolver import PoseBuffer
from gridstitch.ml.feature_detector import FEATURE_TYPES
from gridstitch.utils.config import MergeConfig
from gridstitch.utils.logger import get_log_file_path, setup_logger
from gridstitch.utils.map_io import MapLoadError, load_map, save_map

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="GridStitch - Merge occupancy grids from multiple agents"
    )
    parser.add_argument(
        "maps",
        nargs="+",
        help="Map YAML files (map_server format), one per agent"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="YAML file with merge settings"
    )
    parser.add_argument(
        "--output",
        type=str,
        help="Output prefix for the merged map (writes <prefix>.pgm and <prefix>.yaml)"
    )
    parser.add_argument(
        "--feature-type",
        type=str,
        choices=list(FEATURE_TYPES),
        help="Feature detector algorithm (default from config: orb)"
    )
    parser.add_argument(
        "--confidence",
        type=float,
        help="Minimum match confidence between two grids (default from config: 1.0)"
    )
    parser.add_argument(
        "--agent-pose",
        nargs=3,
        action="append",
        metavar=("FRAME", "X", "Y"),
        default=[],
        help="Current agent position in the merged frame; its footprint is cleared. Repeatable"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )
    return parser


def create_masker(config: MergeConfig, agent_poses) -> AgentMasker:
    """Masker over a pose buffer filled from --agent-pose arguments"""
    buffer = PoseBuffer(global_frame=config.global_frame)
    frames = list(config.agent_frames)
    for frame_id, x, y in agent_poses:
        buffer.set_pose(frame_id, Pose2D.from_xy_yaw(float(x), float(y)))
        if frame_id not in frames:
            frames.append(frame_id)
    return AgentMasker(buffer, frames, half_width=config.mask_half_width, timeout=config.pose_timeout)


def main(argv=None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logger("gridstitch", level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = MergeConfig.from_yaml(args.config) if args.config else MergeConfig()
        config = config.updated(feature_type=args.feature_type, confidence=args.confidence)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    grids = []
    for map_path in args.maps:
        try:
            grids.append(load_map(map_path, frame_id=Path(map_path).stem))
        except MapLoadError as e:
            logger.error(str(e))
            return 1

    masker = create_masker(config, args.agent_pose) if (config.agent_frames or args.agent_pose) else None
    pipeline = MergingPipeline(config=config, masker=masker)

    logger.info(f"Merging {len(grids)} maps...")
    pipeline.feed(grids)
    if not pipeline.estimate_transforms():
        logger.error("Could not estimate transforms between maps")
        return 1

    poses = {
        Path(map_path).name: pose.to_dict()
        for map_path, pose in zip(args.maps, pipeline.get_transforms())
    }
    print(yaml.safe_dump(poses, default_flow_style=False, sort_keys=False), end="")

    merged = pipeline.compose_grids()
    if merged is None:
        logger.error("Nothing could be merged")
        return 2

    if args.output:
        save_map(merged, args.output)

    log_file = get_log_file_path()
    if log_file is not None:
        logger.debug(f"Log written to {log_file}")
    logger.info("Process completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
