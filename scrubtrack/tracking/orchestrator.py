"""
Tracking orchestrator: the public entry point of scrubtrack.

The orchestrator sequences frame ingestion, flow estimation, ledger
updates and state changes. It is the only component that touches more
than one of FrameStore, PositionLedger and TrackerState per operation.

All operations are synchronous and must be called from a single control
flow. Frame acquisition (seek/decode) happens outside, before
ingest_frame is called.
"""

import logging
from typing import Any

import numpy as np

from scrubtrack.core.config import TrackingConfig
from scrubtrack.core.diagnostics import DiagnosticsLog
from scrubtrack.tracking.flow import FlowEstimator, FlowPrimitive, FlowResult, load_flow_primitive
from scrubtrack.tracking.frame_store import FrameStore, to_gray
from scrubtrack.tracking.ledger import PositionLedger
from scrubtrack.tracking.planar import CornerUpdateStrategy, PlanarTrackerManager
from scrubtrack.tracking.state import TrackerState
from scrubtrack.tracking.types import (
    PlanarTracker,
    PositionSource,
    TrackingPoint,
    TrajectoryPath,
)

logger = logging.getLogger(__name__)


class TrackerOrchestrator:
    """
    Point and planar tracking over a scrubbable video.

    Attributes:
        config: Tracking configuration
        diagnostics: Structured event log for the host application
        frame_store: Previous/current grayscale frames
        ledger: Per-frame position authority
        state: Points, planar trackers and frame counter

    Example:
        >>> tracker = TrackerOrchestrator()
        >>> tracker.initialize()
        True
        >>> tracker.set_current_frame(0)
        >>> pid = tracker.add_point(100, 100)
        >>> tracker.ingest_frame(frame0)
        >>> tracker.ingest_frame(frame1, frame=1)
        >>> tracker.get_position_at_frame(pid, 1)
    """

    def __init__(
        self,
        config: TrackingConfig | None = None,
        flow_primitive: FlowPrimitive | None = None,
        corner_strategy: CornerUpdateStrategy | None = None,
        diagnostics: DiagnosticsLog | None = None,
        color_order: str = "bgr",
    ):
        """
        Args:
            config: Tracking configuration (defaults if None)
            flow_primitive: Optical flow routine; negotiated on initialize() if None
            corner_strategy: Planar corner strategy (from config if None)
            diagnostics: Event log (a new bounded log if None)
            color_order: Channel order of ingested color frames, "bgr" or "rgb"
        """
        self.config = config or TrackingConfig()
        self.diagnostics = (
            diagnostics if diagnostics is not None
            else DiagnosticsLog(self.config.diagnostics_capacity)
        )
        self.color_order = color_order

        self.frame_store = FrameStore()
        self.ledger = PositionLedger(self.config.points.trajectory_length, self.diagnostics)
        self.state = TrackerState(self.config.points, self.config.confidence, self.diagnostics)
        self.planar = PlanarTrackerManager(
            self.ledger,
            self.config.planar,
            self.config.points,
            strategy=corner_strategy,
            diagnostics=self.diagnostics,
        )

        self._primitive = flow_primitive
        self.estimator: FlowEstimator | None = None

    # Lifecycle

    @property
    def is_initialized(self) -> bool:
        return self.state.is_initialized and self.estimator is not None

    def initialize(self) -> bool:
        """
        Resolve the optical flow capability.

        Returns:
            True if tracking is available. While False, ingest_frame passes
            points through unchanged.
        """
        if self.is_initialized:
            return True

        primitive = self._primitive
        if primitive is None:
            primitive = load_flow_primitive(self.config.flow.min_eig_threshold)
        if primitive is None:
            logger.error("Optical flow primitive unavailable; tracker not initialized")
            self.diagnostics.log(self.state.frame_count, "INITIALIZE_FAILED", {}, "error")
            return False

        self._primitive = primitive
        self.estimator = FlowEstimator(
            primitive,
            self.config.flow,
            self.config.quality,
            self.diagnostics,
        )
        self.state.is_initialized = True
        return True

    def reset(self) -> None:
        """Release frame buffers and reset frame bookkeeping. Points are kept."""
        self.frame_store.dispose()
        self.state.reset()

    def reset_frame_buffers(self) -> None:
        """Release frame buffers so the next ingested frame starts a fresh pair."""
        self.frame_store.reset_buffers()
        self.state.reset_frame_tracking()

    def handle_seek(self) -> None:
        """Note an arbitrary seek: no skip penalty next pass, continuous mode off."""
        self.state.handle_seek()

    def dispose(self) -> None:
        """Release everything. The tracker must be initialized again before use."""
        self.frame_store.dispose()
        self.state.dispose()
        self.estimator = None

    # Point management

    def add_point(self, x: float, y: float, search_radius: float | None = None) -> str:
        """Place a new point at the current frame and return its id."""
        frame = self.state.frame_count
        point = self.state.create_point(x, y, search_radius)
        self.ledger.set_position_at_frame(point, point.x, point.y, frame, PositionSource.MANUAL)
        point.last_manual_move_frame = frame
        self.state.add_point(point)
        self.diagnostics.log(frame, "POINT_ADDED", {
            "point_id": point.id,
            "position": (point.x, point.y),
            "search_radius": point.search_radius,
        })
        return point.id

    def remove_point(self, point_id: str) -> bool:
        return self.state.remove_point(point_id)

    def clear_all(self) -> None:
        """Remove all user points and planar trackers."""
        self.state.clear_points()
        self.clear_all_planar_trackers()

    def move_point(self, point_id: str, x: float, y: float) -> bool:
        """
        Manually place a point at the current frame.

        The manual position becomes authoritative for this frame and the
        point is fully trusted and active again.

        Returns:
            False if the id is unknown
        """
        point = self.state.find_point(point_id)
        if point is None:
            return False
        frame = self.state.frame_count
        self.ledger.set_position_at_frame(point, x, y, frame, PositionSource.MANUAL)
        self.state.mark_manual(point, frame)
        self.diagnostics.log(frame, "MANUAL_POSITION_SET", {
            "point_id": point_id,
            "position": (round(float(x), 2), round(float(y), 2)),
        })
        return True

    def update_search_radius(self, point_id: str, radius: float) -> bool:
        point = self.state.find_point(point_id)
        if point is None:
            return False
        self.state.update_search_radius(point, radius)
        return True

    def reactivate_points(self) -> int:
        """Reactivate inactive points and planar trackers. Returns points reactivated."""
        count = self.state.reactivate_points()
        floor = self.config.confidence.reactivation_floor
        for tracker in self.state.planar_trackers:
            if not tracker.is_active:
                tracker.is_active = True
                tracker.confidence = floor
        return count

    def get_tracking_points(self) -> list[TrackingPoint]:
        """User points (planar feature points are never listed)."""
        return self.state.points

    def get_position_at_frame(self, point_id: str, frame: int) -> tuple[float, float] | None:
        point = self.state.find_point(point_id)
        if point is None:
            return None
        return self.ledger.get_position_at_frame(point, frame)

    def get_frame_positions(self, point_id: str) -> dict[int, tuple[float, float]]:
        point = self.state.find_point(point_id)
        if point is None:
            return {}
        return self.ledger.frame_positions(point)

    def get_trajectory_paths(self, frame: int, frame_range: int = 5) -> list[TrajectoryPath]:
        return self.ledger.get_trajectory_paths(self.state.points, frame, frame_range)

    def get_tracking_data(self, frame_num: int) -> dict[str, Any]:
        """Resolved positions of every user point and planar tracker at a frame."""
        return {
            "frame": frame_num,
            "points": {
                p.id: self.ledger.get_position_at_frame(p, frame_num) for p in self.state.points
            },
            "planar_trackers": {
                t.id: self.planar.corners_at_frame(t, frame_num)
                for t in self.state.planar_trackers
            },
        }

    # Frame handling

    def set_current_frame(self, frame: int) -> None:
        self.state.set_current_frame(frame)

    @property
    def current_frame(self) -> int:
        return self.state.frame_count

    def enable_continuous_tracking(self) -> None:
        self.state.enable_continuous_tracking()

    def disable_continuous_tracking(self) -> None:
        self.state.disable_continuous_tracking()

    def sync_to_frame(self, frame: int) -> None:
        """
        Scrub to a frame without estimating.

        Every point (features included) and planar tracker takes its
        recorded position for the frame, and the frame buffers are released
        so the next tracking pass starts from the frame being viewed.
        """
        self.state.set_current_frame(frame)
        self.ledger.sync_all(self.state.all_points, frame)
        self.planar.sync_all_to_frame(self.state.planar_trackers, frame)
        self.reset_frame_buffers()

    def ingest_frame(self, image: np.ndarray, frame: int | None = None) -> list[TrackingPoint]:
        """
        Feed the decoded frame for the current frame index.

        Args:
            image: Decoded raster frame
            frame: Frame index; sets the current frame first when given

        Returns:
            Active user points with updated positions (all user points,
            unchanged, when the tracker is not initialized)
        """
        if frame is not None:
            self.set_current_frame(frame)

        if not self.is_initialized:
            return self.state.points

        current = self.state.frame_count
        try:
            gray = to_gray(image, self.color_order)
        except ValueError as e:
            logger.error("Cannot ingest frame %d: %s", current, e)
            self.diagnostics.log(current, "FRAME_REJECTED", {"error": str(e)}, "error")
            return self.state.points

        if not self.frame_store.matches_shape(gray):
            logger.warning(
                "Frame %d size %s differs from stored frames %s; re-anchoring",
                current, gray.shape[:2], self.frame_store.frame_shape,
            )
            self.frame_store.reset_buffers()

        active = self.state.active_points()
        if not self.frame_store.has_prev:
            self.frame_store.initialize_frames(gray)
        elif active:
            with self.frame_store.tracking_pass(gray) as (prev_gray, curr_gray):
                self._perform_tracking(active, prev_gray, curr_gray, current)
            self._update_planar_trackers(current)
        else:
            self.frame_store.reset_frames(gray)

        return self.state.active_points(include_features=False)

    def _perform_tracking(
        self,
        active: list[TrackingPoint],
        prev_gray: np.ndarray | None,
        curr_gray: np.ndarray | None,
        frame: int,
    ) -> None:
        if prev_gray is None or curr_gray is None or prev_gray.shape != curr_gray.shape:
            logger.error("Frame %d: tracking attempted without a valid frame pair", frame)
            self.diagnostics.log(frame, "MISSING_FRAME_BUFFER", {
                "has_prev": prev_gray is not None,
                "has_curr": curr_gray is not None,
            }, "error")
            self.state.apply_tracking_error_penalty(active, frame, "missing_frame_buffer")
            return

        self.state.apply_frame_skip_penalty(frame)

        if self.state.is_continuous_tracking:
            to_estimate = active
        else:
            to_estimate = []
            for point in active:
                if frame in point.frame_positions:
                    self.ledger.sync_point_to_frame(point, frame)
                else:
                    to_estimate.append(point)
            if len(to_estimate) < len(active):
                self.diagnostics.log(frame, "REPLAYED_CACHED_POSITIONS", {
                    "replayed": len(active) - len(to_estimate),
                }, "debug")

        if not to_estimate:
            return

        quality = self.config.quality
        recent_manual = {
            p.id for p in to_estimate
            if self.ledger.was_recently_manually_moved(p, frame, quality.recent_manual_frames)
        }
        try:
            results = self.estimator.estimate(to_estimate, prev_gray, curr_gray, frame, recent_manual)
        except Exception as e:
            logger.exception("Frame %d: flow estimation failed", frame)
            self.diagnostics.log(frame, "FLOW_EXCEPTION", {"error": repr(e)}, "error")
            self.state.apply_tracking_error_penalty(to_estimate, frame, "flow_exception")
            return
        self._apply_results(to_estimate, results, frame, recent_manual)

    def _apply_results(
        self,
        points: list[TrackingPoint],
        results: list[FlowResult],
        frame: int,
        recent_manual: set[str],
    ) -> None:
        by_id = {p.id: p for p in points}
        accepted = rejected = deactivated = 0
        for result in results:
            point = by_id.get(result.point_id)
            if point is None:
                continue
            if result.accepted:
                if not self.ledger.record_tracked(point, result.x, result.y, frame, result.error):
                    # the user's placement for this frame stands; continue from it
                    self.ledger.sync_point_to_frame(point, frame)
                self.state.record_success(point)
                accepted += 1
            else:
                logger.warning(
                    "Frame %d: estimate for %s rejected (%s)", frame, point.id, result.reason,
                )
                if self.state.record_failure(point, frame, result.reason, point.id in recent_manual):
                    deactivated += 1
                rejected += 1

        self.diagnostics.log(frame, "TRACKING_SUMMARY", {
            "accepted": accepted,
            "rejected": rejected,
            "deactivated": deactivated,
        })

    # Planar trackers

    def add_planar_tracker(self, center_x: float, center_y: float, size: float | None = None) -> str:
        """Create a square planar tracker centered on a point and return its id."""
        if size is None:
            size = self.planar.default_size(self.frame_store.frame_shape)
        tracker = self.planar.create_planar_tracker(
            center_x, center_y, size, self.state.frame_count,
        )
        self.state.add_planar_tracker(tracker)
        self.diagnostics.log(self.state.frame_count, "PLANAR_ADDED", {
            "tracker_id": tracker.id,
            "center": tracker.center,
            "size": size,
        })
        return tracker.id

    def remove_planar_tracker(self, tracker_id: str) -> bool:
        return self.state.remove_planar_tracker(tracker_id)

    def update_planar_tracker_corner(self, tracker_id: str, corner_index: int, x: float, y: float) -> bool:
        tracker = self.state.find_planar_tracker(tracker_id)
        if tracker is None:
            return False
        return self.planar.update_corner_position(tracker, corner_index, x, y, self.state.frame_count)

    def get_planar_trackers(self) -> list[PlanarTracker]:
        return self.state.planar_trackers

    def clear_all_planar_trackers(self) -> None:
        for tracker in self.state.planar_trackers:
            self.state.remove_planar_tracker(tracker.id)

    def _update_planar_trackers(self, frame: int) -> None:
        for tracker in self.state.planar_trackers:
            if tracker.is_active:
                self.planar.update_from_features(tracker, frame)

    # Diagnostics

    def get_tracker_state(self) -> dict[str, Any]:
        state = self.state.get_tracker_state()
        state.update({
            "has_prev_gray": self.frame_store.has_prev,
            "has_curr_gray": self.frame_store.has_curr,
            "has_flow_primitive": self._primitive is not None,
        })
        return state

    def get_diagnostic_info(self) -> dict[str, Any]:
        return {
            "tracker_state": self.get_tracker_state(),
            "planar_trackers": [
                {
                    "id": t.id,
                    "is_active": t.is_active,
                    "confidence": round(t.confidence, 3),
                    "corners": t.corner_positions(),
                    "active_features": sum(1 for f in t.feature_points if f.is_active),
                }
                for t in self.state.planar_trackers
            ],
            "recent_events": len(self.diagnostics),
        }
