"""
Lookup of live agent poses in the global map frame
"""

import threading
import time
from typing import Dict, Optional
import logging

from gridstitch.core.grid import Pose2D

logger = logging.getLogger(__name__)


class PoseLookupError(Exception):
    """Pose of a frame could not be resolved"""


class PoseLookupTimeout(PoseLookupError, TimeoutError):
    """Pose did not become available within the allowed wait"""


class PoseResolver:
    """Base class for pose sources used by agent masking."""

    def resolve(self, frame_id: str, timeout: float) -> Pose2D:
        """
        Pose of `frame_id` in the global frame.

        Waits at most `timeout` seconds and raises PoseLookupError (or its
        timeout subclass) when no pose is available.
        """
        raise NotImplementedError


class PoseBuffer(PoseResolver):
    """
    Latest known pose per frame, filled asynchronously.

    Producers call `set_pose` from any thread; `resolve` blocks until the
    requested frame has a pose or the timeout expires.
    """

    def __init__(self, global_frame: str = "map"):
        self.global_frame = global_frame
        self._poses: Dict[str, Pose2D] = {}
        self._condition = threading.Condition()

    @staticmethod
    def _normalize(frame_id: str) -> str:
        return frame_id.lstrip('/')

    def set_pose(self, frame_id: str, pose: Pose2D):
        """Store the newest pose of a frame and wake up waiting lookups"""
        with self._condition:
            self._poses[self._normalize(frame_id)] = pose
            self._condition.notify_all()

    def clear(self, frame_id: Optional[str] = None):
        with self._condition:
            if frame_id is None:
                self._poses.clear()
            else:
                self._poses.pop(self._normalize(frame_id), None)

    def frames(self):
        with self._condition:
            return sorted(self._poses)

    def resolve(self, frame_id: str, timeout: float) -> Pose2D:
        key = self._normalize(frame_id)
        deadline = time.monotonic() + max(0.0, timeout)
        with self._condition:
            while key not in self._poses:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PoseLookupTimeout(
                        f"Lookup would require extrapolation: frame '{frame_id}' not available "
                        f"in '{self.global_frame}' after {timeout:.1f}s"
                    )
                self._condition.wait(remaining)
            return self._poses[key]
