"""
Batch tracking through a range of frames.

Runs the orchestrator over consecutive frames in either direction, the
way a "track forward" or "track backward" button would. Cancellation is
checked at every frame boundary, never in the middle of a step.

Example:
    >>> with VideoFrameSource("shot.mp4") as source:
    ...     result = track_forward(tracker, source, start=10, stop=120)
    >>> result.frames_processed
    110
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

from scrubtrack.core.base import FrameSource
from scrubtrack.tracking.orchestrator import TrackerOrchestrator
from scrubtrack.tracking.types import TrackingPoint

logger = logging.getLogger(__name__)

FrameCallback = Callable[[int, list[TrackingPoint]], None]


@dataclass
class BatchResult:
    """Outcome of one batch run."""
    start: int
    stop: int
    direction: int
    frames_processed: int = 0
    last_frame: int | None = None
    cancelled: bool = False
    failed_frame: int | None = None
    active_per_frame: dict[int, int] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return not self.cancelled and self.failed_frame is None and self.last_frame == self.stop


def track_frames(
    orchestrator: TrackerOrchestrator,
    source: FrameSource,
    start: int,
    stop: int,
    should_cancel: Callable[[], bool] | None = None,
    on_frame: FrameCallback | None = None,
) -> BatchResult:
    """
    Track every frame from start to stop inclusive.

    The frame pair is re-anchored on start, so positions at start are the
    seed for the run. Continuous tracking is on for the duration and off
    again when the run ends for any reason.

    Args:
        orchestrator: Initialized tracker holding the points to follow
        source: Frame source addressed by 0-based index
        start: Anchor frame
        stop: Last frame to track; below start tracks backward
        should_cancel: Polled before each step; True stops the run
        on_frame: Called with (frame, active points) after each step

    Returns:
        BatchResult describing how far the run got
    """
    direction = 1 if stop >= start else -1
    result = BatchResult(start=start, stop=stop, direction=direction)

    # Also releases the frame buffers.
    orchestrator.sync_to_frame(start)

    anchor = source.read(start)
    if anchor is None:
        logger.error("Cannot read anchor frame %d; nothing tracked", start)
        result.failed_frame = start
        return result

    orchestrator.ingest_frame(anchor, frame=start)
    result.last_frame = start

    orchestrator.enable_continuous_tracking()
    try:
        for frame in range(start + direction, stop + direction, direction):
            if should_cancel is not None and should_cancel():
                logger.info("Tracking cancelled before frame %d", frame)
                result.cancelled = True
                break

            image = source.read(frame)
            if image is None:
                logger.warning("Frame %d unavailable; stopping", frame)
                result.failed_frame = frame
                break

            points = orchestrator.ingest_frame(image, frame=frame)
            result.frames_processed += 1
            result.last_frame = frame
            result.active_per_frame[frame] = len(points)

            if on_frame is not None:
                on_frame(frame, points)
    finally:
        orchestrator.disable_continuous_tracking()

    logger.info(
        "Tracked %d frame(s) %s from %d to %s",
        result.frames_processed,
        "forward" if direction > 0 else "backward",
        start,
        result.last_frame,
    )
    return result


def track_forward(
    orchestrator: TrackerOrchestrator,
    source: FrameSource,
    start: int,
    stop: int,
    should_cancel: Callable[[], bool] | None = None,
    on_frame: FrameCallback | None = None,
) -> BatchResult:
    if stop < start:
        raise ValueError(f"Forward tracking needs stop >= start, got {start}..{stop}")
    return track_frames(orchestrator, source, start, stop, should_cancel, on_frame)


def track_backward(
    orchestrator: TrackerOrchestrator,
    source: FrameSource,
    start: int,
    stop: int = 0,
    should_cancel: Callable[[], bool] | None = None,
    on_frame: FrameCallback | None = None,
) -> BatchResult:
    if stop > start:
        raise ValueError(f"Backward tracking needs stop <= start, got {start}..{stop}")
    return track_frames(orchestrator, source, start, stop, should_cancel, on_frame)
