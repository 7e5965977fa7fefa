"""
Merge configuration

Defaults live on MergeConfig; a YAML file can override them and command
line flags override the file.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union
import logging
import yaml

from gridstitch.ml.feature_detector import FEATURE_TYPES

logger = logging.getLogger(__name__)


class MergeConfig:
    """Settings of one merging pipeline"""

    def __init__(
        self,
        feature_type: str = 'orb',
        confidence: float = 1.0,
        max_features: int = 1500,
        ratio_threshold: float = 0.8,
        agent_frames: Optional[List[str]] = None,
        global_frame: str = 'map',
        pose_timeout: float = 3.0,
        mask_half_width: int = 3
    ):
        """
        Args:
            feature_type: Feature detector algorithm ('orb', 'akaze', 'sift')
            confidence: Minimum match confidence for two grids to be aligned
            max_features: Maximum number of features kept per grid
            ratio_threshold: Lowe's ratio test threshold
            agent_frames: Frame ids of agents whose footprint is cleared
            global_frame: Frame the merged grid is expressed in
            pose_timeout: Maximum wait for one agent pose (seconds)
            mask_half_width: Cells cleared in each direction around an agent
        """
        self.feature_type = feature_type
        self.confidence = confidence
        self.max_features = max_features
        self.ratio_threshold = ratio_threshold
        self.agent_frames = list(agent_frames or [])
        self.global_frame = global_frame
        self.pose_timeout = pose_timeout
        self.mask_half_width = mask_half_width
        self.validate()

    def validate(self):
        if self.feature_type.lower() not in FEATURE_TYPES:
            raise ValueError(f"Unknown feature type '{self.feature_type}', "
                             f"expected one of {', '.join(FEATURE_TYPES)}")
        if self.max_features <= 0:
            raise ValueError(f"max_features must be positive, got {self.max_features}")
        if not 0.0 < self.ratio_threshold <= 1.0:
            raise ValueError(f"ratio_threshold must be in (0, 1], got {self.ratio_threshold}")
        if self.pose_timeout < 0:
            raise ValueError(f"pose_timeout must be non-negative, got {self.pose_timeout}")
        if self.mask_half_width < 0:
            raise ValueError(f"mask_half_width must be non-negative, got {self.mask_half_width}")

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return {
            'feature_type': self.feature_type,
            'confidence': self.confidence,
            'max_features': self.max_features,
            'ratio_threshold': self.ratio_threshold,
            'agent_frames': list(self.agent_frames),
            'global_frame': self.global_frame,
            'pose_timeout': self.pose_timeout,
            'mask_half_width': self.mask_half_width
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'MergeConfig':
        """Create from dictionary; unknown keys are rejected"""
        known = set(cls().to_dict())
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'MergeConfig':
        """Load configuration from a YAML file"""
        path = Path(path)
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        logger.info(f"Loaded configuration from {path}")
        return cls.from_dict(data)

    def updated(self, **overrides) -> 'MergeConfig':
        """Copy with the given non-None values replaced"""
        data = self.to_dict()
        data.update({key: value for key, value in overrides.items() if value is not None})
        return MergeConfig.from_dict(data)

    def __repr__(self) -> str:
        return f"MergeConfig({self.to_dict()})"
