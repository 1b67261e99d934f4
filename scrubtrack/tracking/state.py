"""
Authoritative collection of tracking points and planar trackers.

TrackerState owns the point and planar-tracker collections, the frame
counter and all confidence bookkeeping. A point only becomes inactive
when its confidence drops below the deactivation threshold, and only
becomes active again through explicit reactivation or a manual move.
"""

import logging
from typing import Any

from scrubtrack.core.config import ConfidenceConfig, PointConfig
from scrubtrack.core.diagnostics import DiagnosticsLog
from scrubtrack.tracking.flow import adaptive_window_size
from scrubtrack.tracking.types import PlanarTracker, TrackingPoint, new_id

logger = logging.getLogger(__name__)


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


class TrackerState:
    """
    Point and planar-tracker lifecycle.

    Example:
        >>> state = TrackerState()
        >>> point = state.create_point(100, 100)
        >>> state.add_point(point)
        >>> state.record_failure(point, frame=3, reason="error_too_high")
        False
    """

    def __init__(
        self,
        point_config: PointConfig | None = None,
        confidence_config: ConfidenceConfig | None = None,
        diagnostics: DiagnosticsLog | None = None,
    ):
        self.point_config = point_config or PointConfig()
        self.confidence_config = confidence_config or ConfidenceConfig()
        self.diagnostics = diagnostics

        self.frame_count = 0
        self.last_processed_frame: int | None = None
        self.is_initialized = False
        self.is_continuous_tracking = False

        self._points: dict[str, TrackingPoint] = {}
        self._features: dict[str, TrackingPoint] = {}
        self._planar: dict[str, PlanarTracker] = {}

    def _log(self, operation: str, data: dict, level: str = "info") -> None:
        if self.diagnostics is not None:
            self.diagnostics.log(self.frame_count, operation, data, level)

    # Point collection

    def clamp_search_radius(self, radius: float) -> float:
        cfg = self.point_config
        return max(cfg.min_search_radius, min(cfg.max_search_radius, float(radius)))

    def create_point(
        self,
        x: float,
        y: float,
        search_radius: float | None = None,
        planar_id: str | None = None,
    ) -> TrackingPoint:
        """Build a new active point with full confidence (not yet stored)."""
        if search_radius is None:
            search_radius = self.point_config.default_search_radius
        radius = search_radius if planar_id else self.clamp_search_radius(search_radius)
        return TrackingPoint(
            id=new_id("feature" if planar_id else "point"),
            x=float(x),
            y=float(y),
            search_radius=radius,
            adaptive_window_size=adaptive_window_size(radius, self.point_config),
            planar_id=planar_id,
        )

    def add_point(self, point: TrackingPoint) -> None:
        if point.is_feature:
            self._features[point.id] = point
        else:
            self._points[point.id] = point

    def remove_point(self, point_id: str) -> bool:
        """Remove a user point. Feature points cannot be removed directly."""
        return self._points.pop(point_id, None) is not None

    def remove_feature_points(self, planar_id: str) -> int:
        doomed = [pid for pid, p in self._features.items() if p.planar_id == planar_id]
        for pid in doomed:
            del self._features[pid]
        return len(doomed)

    def find_point(self, point_id: str) -> TrackingPoint | None:
        """Find a user point by id. Feature points are not returned."""
        return self._points.get(point_id)

    @property
    def points(self) -> list[TrackingPoint]:
        """User points in insertion order."""
        return list(self._points.values())

    @property
    def feature_points(self) -> list[TrackingPoint]:
        return list(self._features.values())

    @property
    def all_points(self) -> list[TrackingPoint]:
        """User and feature points."""
        return self.points + self.feature_points

    def active_points(self, include_features: bool = True) -> list[TrackingPoint]:
        pool = self.all_points if include_features else self.points
        return [p for p in pool if p.is_active]

    def inactive_points(self, include_features: bool = False) -> list[TrackingPoint]:
        pool = self.all_points if include_features else self.points
        return [p for p in pool if not p.is_active]

    def clear_points(self) -> None:
        """Remove all user points."""
        self._points.clear()

    # Planar trackers

    def add_planar_tracker(self, tracker: PlanarTracker) -> None:
        self._planar[tracker.id] = tracker
        for feature in tracker.feature_points:
            self.add_point(feature)

    def remove_planar_tracker(self, tracker_id: str) -> bool:
        tracker = self._planar.pop(tracker_id, None)
        if tracker is None:
            return False
        self.remove_feature_points(tracker_id)
        return True

    def find_planar_tracker(self, tracker_id: str) -> PlanarTracker | None:
        return self._planar.get(tracker_id)

    @property
    def planar_trackers(self) -> list[PlanarTracker]:
        return list(self._planar.values())

    # Confidence bookkeeping

    def record_success(self, point: TrackingPoint) -> None:
        point.confidence = _clamp01(point.confidence + self.confidence_config.success_gain)

    def record_failure(
        self,
        point: TrackingPoint,
        frame: int,
        reason: str,
        recently_manual: bool = False,
    ) -> bool:
        """
        Penalize a point for a rejected estimate.

        Returns:
            True if the point was deactivated by this failure
        """
        cfg = self.confidence_config
        decay = cfg.recent_manual_failure_decay if recently_manual else cfg.failure_decay
        point.confidence = _clamp01(point.confidence * decay)

        if point.is_active and point.confidence < cfg.deactivation_threshold:
            point.is_active = False
            logger.warning(
                "Point %s deactivated at frame %d (%s, confidence %.3f)",
                point.id, frame, reason, point.confidence,
            )
            self._log("POINT_DEACTIVATED", {
                "point_id": point.id,
                "frame": frame,
                "reason": reason,
                "confidence": round(point.confidence, 4),
            }, "warn")
            return True
        return False

    def apply_tracking_error_penalty(self, points: list[TrackingPoint], frame: int, reason: str) -> int:
        """Treat every given point as individually failed. Returns deactivations."""
        return sum(1 for p in points if self.record_failure(p, frame, reason))

    def apply_frame_skip_penalty(self, frame: int) -> bool:
        """
        Penalize active points when frames were skipped since the last pass.

        The penalty never raises confidence and never deactivates a point.

        Returns:
            True if a penalty was applied
        """
        cfg = self.confidence_config
        skipped = (
            self.last_processed_frame is not None
            and abs(frame - self.last_processed_frame) > cfg.frame_skip_tolerance
        )
        if skipped:
            for point in self.active_points():
                penalized = point.confidence * cfg.frame_skip_decay
                point.confidence = _clamp01(max(penalized, min(point.confidence, cfg.frame_skip_floor)))
            self._log("FRAME_SKIP_PENALTY", {
                "from_frame": self.last_processed_frame,
                "to_frame": frame,
            }, "debug")
        self.last_processed_frame = frame
        return skipped

    def mark_manual(self, point: TrackingPoint, frame: int) -> None:
        """A user edit restores full trust in the point."""
        point.confidence = 1.0
        point.is_active = True
        point.last_manual_move_frame = frame

    def reactivate_points(self) -> int:
        """
        Reactivate every inactive point at the reactivation floor.

        Returns:
            Number of points reactivated
        """
        floor = self.confidence_config.reactivation_floor
        count = 0
        for point in self.all_points:
            if not point.is_active:
                point.confidence = _clamp01(max(point.confidence, floor))
                point.is_active = True
                count += 1
        if count:
            self._log("POINTS_REACTIVATED", {"count": count, "confidence": floor})
        return count

    def update_search_radius(self, point: TrackingPoint, radius: float) -> None:
        point.search_radius = self.clamp_search_radius(radius)
        point.adaptive_window_size = adaptive_window_size(point.search_radius, self.point_config)

    # Frame bookkeeping

    def set_current_frame(self, frame: int) -> None:
        self.frame_count = int(frame)

    def enable_continuous_tracking(self) -> None:
        self.is_continuous_tracking = True
        self._log("CONTINUOUS_TRACKING_ENABLED", {"active_points": len(self.active_points())})

    def disable_continuous_tracking(self) -> None:
        self.is_continuous_tracking = False
        self._log("CONTINUOUS_TRACKING_DISABLED", {})

    def reset_frame_tracking(self) -> None:
        """Forget the last processed frame so no skip penalty applies next pass."""
        self.last_processed_frame = None

    def handle_seek(self) -> None:
        self.last_processed_frame = None
        self.is_continuous_tracking = False

    def reset(self) -> None:
        self.frame_count = 0
        self.last_processed_frame = None
        self.is_continuous_tracking = False

    def dispose(self) -> None:
        self._points.clear()
        self._features.clear()
        self._planar.clear()
        self.is_initialized = False
        self.reset()

    # Diagnostics

    def get_tracker_state(self) -> dict[str, Any]:
        points = self.points
        active = [p for p in points if p.is_active]
        average = sum(p.confidence for p in points) / len(points) if points else 0.0
        return {
            "is_initialized": self.is_initialized,
            "frame_count": self.frame_count,
            "last_processed_frame": self.last_processed_frame,
            "continuous_tracking": self.is_continuous_tracking,
            "total_points": len(points),
            "active_points": len(active),
            "inactive_points": len(points) - len(active),
            "feature_points": len(self._features),
            "planar_trackers": len(self._planar),
            "average_confidence": average,
            "point_details": [
                {
                    "id": p.id,
                    "x": round(p.x, 2),
                    "y": round(p.y, 2),
                    "confidence": round(p.confidence, 3),
                    "is_active": p.is_active,
                    "trajectory_length": len(p.trajectory),
                }
                for p in points
            ],
        }
