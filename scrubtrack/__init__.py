"""
scrubtrack - Interactive point and planar tracking for video
=============================================================

Tracks user-placed points and quadrilaterals across the frames of a video
while the user scrubs, steps, or batch-tracks forward and backward.
Optical flow estimates are reconciled with manual corrections, and
failing points lose confidence instead of drifting.

Main modules:
- scrubtrack.tracking: Orchestrator, flow estimation, position ledger,
  planar trackers, batch loop and track file I/O
- scrubtrack.core: Configuration, diagnostics, frame sources

Quick start:
    >>> from scrubtrack import TrackerOrchestrator
    >>> tracker = TrackerOrchestrator()
    >>> tracker.initialize()
    >>> pid = tracker.add_point(320, 240)
    >>> tracker.ingest_frame(frame0, frame=0)
    >>> tracker.ingest_frame(frame1, frame=1)
    >>> tracker.get_position_at_frame(pid, 1)
"""

__version__ = "0.1.0"

from scrubtrack.core.config import TrackingConfig, load_config
from scrubtrack.core.diagnostics import DiagnosticsLog
from scrubtrack.tracking.orchestrator import TrackerOrchestrator
from scrubtrack.tracking.batch import track_backward, track_forward

__all__ = [
    "__version__",
    "TrackingConfig",
    "load_config",
    "DiagnosticsLog",
    "TrackerOrchestrator",
    "track_forward",
    "track_backward",
]
