"""
Video frame source for scrubtrack.

The tracking core never decodes video itself; it consumes frames through
the FrameSource protocol. VideoFrameSource is the OpenCV-backed
implementation used by the command line tool.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class VideoProperties:
    """Properties of a video file."""
    width: int
    height: int
    fps: float
    frame_count: int

    @classmethod
    def from_capture(cls, cap: cv2.VideoCapture) -> "VideoProperties":
        """Create VideoProperties from an OpenCV VideoCapture."""
        return cls(
            width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            fps=cap.get(cv2.CAP_PROP_FPS),
            frame_count=int(cap.get(cv2.CAP_PROP_FRAME_COUNT)),
        )

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "frame_count": self.frame_count,
        }

    @property
    def is_portrait(self) -> bool:
        """Check if video is in portrait orientation."""
        return self.height > self.width


class VideoFrameSource:
    """
    Random-access frame source over a video file.

    Frames are addressed by 0-based index. Sequential reads avoid a seek;
    any other index triggers one.

    Example:
        with VideoFrameSource("input.mp4") as source:
            frame = source.read(120)
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._cap: cv2.VideoCapture | None = None
        self._props: VideoProperties | None = None
        self._next_index = 0

    def open(self) -> "VideoFrameSource":
        """Open the video file."""
        if not self.path.exists():
            raise FileNotFoundError(f"Video file not found: {self.path}")

        self._cap = cv2.VideoCapture(str(self.path))
        if not self._cap.isOpened():
            raise RuntimeError(f"Failed to open video: {self.path}")

        self._props = VideoProperties.from_capture(self._cap)
        self._next_index = 0
        logger.info(
            "Opened %s: %dx%d @ %.2f fps, %d frames",
            self.path.name, self._props.width, self._props.height,
            self._props.fps, self._props.frame_count,
        )
        return self

    def close(self) -> None:
        """Close the video file."""
        if self._cap:
            self._cap.release()
            self._cap = None

    @property
    def properties(self) -> VideoProperties:
        """Get video properties."""
        if self._props is None:
            raise RuntimeError("Video not opened. Call open() first.")
        return self._props

    @property
    def frame_count(self) -> int:
        return self.properties.frame_count

    def read(self, frame_index: int) -> np.ndarray | None:
        """Read the frame at a 0-based index, or None past the end."""
        if self._cap is None:
            raise RuntimeError("Video not opened. Call open() first.")
        if frame_index < 0 or frame_index >= self.frame_count:
            return None

        if frame_index != self._next_index:
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, frame_index)

        ret, frame = self._cap.read()
        if not ret:
            logger.warning("Failed to decode frame %d of %s", frame_index, self.path.name)
            self._next_index = -1
            return None

        self._next_index = frame_index + 1
        return frame

    def __iter__(self) -> Iterator[tuple[int, np.ndarray]]:
        """Iterate over all frames from the start."""
        for index in range(self.frame_count):
            frame = self.read(index)
            if frame is None:
                break
            yield index, frame

    def __enter__(self) -> "VideoFrameSource":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


def get_video_properties(path: str | Path) -> VideoProperties:
    """Get properties of a video file without opening a source."""
    cap = cv2.VideoCapture(str(path))
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open video: {path}")
    try:
        return VideoProperties.from_capture(cap)
    finally:
        cap.release()
