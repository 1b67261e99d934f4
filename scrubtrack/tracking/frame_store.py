"""
Rolling pair of grayscale reference frames.

FrameStore owns the previous/current grayscale buffers that optical flow
compares. Both buffers are populated together or both are empty. Every
replacement path drops the outgoing buffer before the new one is
assigned.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

import cv2
import numpy as np

logger = logging.getLogger(__name__)


def to_gray(image: np.ndarray, color_order: str = "bgr") -> np.ndarray:
    """
    Convert a raster frame to a contiguous uint8 grayscale array.

    Args:
        image: HxW, HxWx1, HxWx3 or HxWx4 array
        color_order: "bgr" (OpenCV decode order) or "rgb" (canvas order)

    Returns:
        HxW uint8 array owned by the caller

    Raises:
        ValueError: If the array shape is not a supported raster layout
    """
    if image is None:
        raise ValueError("Frame is None")

    frame = np.asarray(image)
    if frame.dtype != np.uint8:
        frame = np.clip(frame, 0, 255).astype(np.uint8)

    if frame.ndim == 3 and frame.shape[2] == 1:
        frame = frame[:, :, 0]

    if frame.ndim == 2:
        gray = frame.copy()
    elif frame.ndim == 3 and frame.shape[2] == 3:
        code = cv2.COLOR_RGB2GRAY if color_order == "rgb" else cv2.COLOR_BGR2GRAY
        gray = cv2.cvtColor(frame, code)
    elif frame.ndim == 3 and frame.shape[2] == 4:
        code = cv2.COLOR_RGBA2GRAY if color_order == "rgb" else cv2.COLOR_BGRA2GRAY
        gray = cv2.cvtColor(frame, code)
    else:
        raise ValueError(f"Unsupported frame shape: {frame.shape}")

    if gray.size == 0:
        raise ValueError("Frame is empty")
    return np.ascontiguousarray(gray)


class FrameStore:
    """
    Owner of the previous/current grayscale frame buffers.

    Example:
        >>> store = FrameStore()
        >>> store.initialize_frames(to_gray(first_frame))
        >>> with store.tracking_pass(to_gray(next_frame)) as (prev, curr):
        ...     estimate(prev, curr)
    """

    def __init__(self):
        self.prev_gray: np.ndarray | None = None
        self.curr_gray: np.ndarray | None = None

    @property
    def has_prev(self) -> bool:
        return self.prev_gray is not None

    @property
    def has_curr(self) -> bool:
        return self.curr_gray is not None

    @property
    def is_ready(self) -> bool:
        """True when both buffers are populated and the same size."""
        return (
            self.prev_gray is not None
            and self.curr_gray is not None
            and self.prev_gray.shape == self.curr_gray.shape
        )

    @property
    def frame_shape(self) -> tuple[int, int] | None:
        """(height, width) of the stored frames, if any."""
        frame = self.curr_gray if self.curr_gray is not None else self.prev_gray
        return None if frame is None else frame.shape[:2]

    def matches_shape(self, gray: np.ndarray) -> bool:
        shape = self.frame_shape
        return shape is None or shape == gray.shape[:2]

    def _release(self) -> None:
        self.prev_gray = None
        self.curr_gray = None

    def initialize_frames(self, gray: np.ndarray) -> None:
        """Set both buffers to the same frame (zero initial displacement)."""
        self._release()
        self.prev_gray = gray.copy()
        self.curr_gray = gray.copy()

    def reset_frames(self, gray: np.ndarray) -> None:
        """Discard history and re-anchor both buffers on a new frame."""
        self.initialize_frames(gray)

    def update_current(self, gray: np.ndarray) -> None:
        """Replace the current buffer, keeping the previous one."""
        self.curr_gray = None
        self.curr_gray = gray.copy()

    def rotate(self) -> None:
        """Move the current buffer into the previous slot."""
        if self.curr_gray is None:
            return
        self.prev_gray = None
        self.prev_gray = self.curr_gray.copy()

    @contextmanager
    def tracking_pass(self, gray: np.ndarray) -> Iterator[tuple[np.ndarray | None, np.ndarray | None]]:
        """
        Swap in a new current frame for one estimation pass.

        Yields the (previous, current) pair and rotates the buffers when the
        block exits, whether or not it raised.
        """
        self.update_current(gray)
        try:
            yield self.prev_gray, self.curr_gray
        finally:
            self.rotate()

    def reset_buffers(self) -> None:
        """Release both buffers."""
        self._release()

    def dispose(self) -> None:
        """Release all resources."""
        self._release()
