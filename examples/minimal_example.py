#!/usr/bin/env python3
"""
Minimal Example: scrubtrack API Usage
=====================================

Shows the essential API calls without extra boilerplate.
This is the "quick reference" version.
"""

import logging

from scrubtrack import TrackerOrchestrator, track_backward, track_forward
from scrubtrack.core.video import VideoFrameSource
from scrubtrack.tracking.track_io import export_point_tracks

logging.basicConfig(level=logging.INFO)


# =============================================================================
# STEP 1: PLACE POINTS
# Equivalent to: scrubtrack track input.mp4 -p 420,310 -p 610,295 -fs 30
# =============================================================================

input_video = "input.mp4"
anchor_frame = 30

tracker = TrackerOrchestrator()
if not tracker.initialize():
    raise SystemExit("Optical flow unavailable")

tracker.set_current_frame(anchor_frame)
left = tracker.add_point(420, 310)
right = tracker.add_point(610, 295, search_radius=40)   # slow-moving detail


# =============================================================================
# STEP 2: TRACK FORWARD, THEN BACKWARD FROM THE SAME ANCHOR
# =============================================================================

with VideoFrameSource(input_video) as source:
    last = source.frame_count - 1
    forward = track_forward(tracker, source, anchor_frame, last)
    print(f"Forward: {forward.frames_processed} frames")

    backward = track_backward(tracker, source, anchor_frame, 0)
    print(f"Backward: {backward.frames_processed} frames")

    # =========================================================================
    # STEP 3: CORRECT A DRIFTED POINT BY HAND AND RE-TRACK FROM THERE
    # =========================================================================

    tracker.sync_to_frame(120)
    tracker.move_point(right, 655, 301)
    tracker.reactivate_points()
    track_forward(tracker, source, 120, last)


# =============================================================================
# STEP 4: EXPORT
# =============================================================================

for path in export_point_tracks(
    {pid: tracker.get_frame_positions(pid) for pid in (left, right)},
    "tracks",
):
    print(f"Wrote {path}")

print(tracker.diagnostics.format_events(limit=10))
