"""
Tracking module - Point and planar tracking over scrubbable video.

This module provides:
- TrackerOrchestrator: Public entry point sequencing every tracking step
- FlowEstimator: Pyramidal Lucas-Kanade with forward-backward verification
- PositionLedger: Per-frame manual/tracked position authority
- TrackerState: Point collection and confidence bookkeeping
- PlanarTrackerManager: Quadrilaterals driven by internal feature grids
- Batch forward/backward tracking and .crv track file I/O

Example:
    >>> from scrubtrack.tracking import TrackerOrchestrator, track_forward
    >>> tracker = TrackerOrchestrator()
    >>> tracker.initialize()
    >>> tracker.add_point(120, 80)
    >>> result = track_forward(tracker, source, start=0, stop=100)
"""

from scrubtrack.tracking.types import (
    FramePosition,
    ManualPosition,
    PlanarTracker,
    PositionSource,
    TrackedPosition,
    TrackingPoint,
    TrajectoryPath,
    TrajectoryPoint,
)
from scrubtrack.tracking.frame_store import FrameStore, to_gray
from scrubtrack.tracking.ledger import PositionLedger
from scrubtrack.tracking.flow import (
    FlowEstimator,
    FlowPrimitive,
    FlowPrimitiveError,
    OpenCVFlowPrimitive,
    load_flow_primitive,
)
from scrubtrack.tracking.state import TrackerState
from scrubtrack.tracking.planar import (
    CentroidScaleStrategy,
    HomographyStrategy,
    PlanarTrackerManager,
)
from scrubtrack.tracking.orchestrator import TrackerOrchestrator
from scrubtrack.tracking.batch import BatchResult, track_backward, track_forward, track_frames
from scrubtrack.tracking.track_io import (
    export_point_tracks,
    read_crv_file,
    write_crv_file,
    parse_track_line,
)

__all__ = [
    "FramePosition",
    "ManualPosition",
    "PlanarTracker",
    "PositionSource",
    "TrackedPosition",
    "TrackingPoint",
    "TrajectoryPath",
    "TrajectoryPoint",
    "FrameStore",
    "to_gray",
    "PositionLedger",
    "FlowEstimator",
    "FlowPrimitive",
    "FlowPrimitiveError",
    "OpenCVFlowPrimitive",
    "load_flow_primitive",
    "TrackerState",
    "CentroidScaleStrategy",
    "HomographyStrategy",
    "PlanarTrackerManager",
    "TrackerOrchestrator",
    "BatchResult",
    "track_backward",
    "track_forward",
    "track_frames",
    "export_point_tracks",
    "read_crv_file",
    "write_crv_file",
    "parse_track_line",
]
