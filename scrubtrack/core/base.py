"""
Protocols shared across scrubtrack.

These define the narrow seams between the tracking core and its
collaborators: whoever decodes video, and whoever consumes tracking data.
"""

from typing import Any, Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class FrameSource(Protocol):
    """Protocol for objects that hand out decoded frames by index."""

    def read(self, frame_index: int) -> np.ndarray | None:
        """
        Return the decoded frame at a 0-based index.

        Returns:
            Raster frame (BGR, BGRA or grayscale) or None if unavailable
        """
        ...


@runtime_checkable
class TrackingDataProvider(Protocol):
    """Protocol for objects that provide tracking data."""

    def get_tracking_data(self, frame_num: int) -> dict[str, Any]:
        """Get tracking data for a specific frame."""
        ...


class ArrayFrameSource:
    """
    In-memory frame source backed by a sequence of arrays.

    Useful for tests and for hosts that already hold decoded frames.

    Example:
        source = ArrayFrameSource([frame0, frame1, frame2])
        frame = source.read(1)
    """

    def __init__(self, frames: list[np.ndarray]):
        self.frames = list(frames)

    def read(self, frame_index: int) -> np.ndarray | None:
        if 0 <= frame_index < len(self.frames):
            return self.frames[frame_index]
        return None

    def __len__(self) -> int:
        return len(self.frames)
