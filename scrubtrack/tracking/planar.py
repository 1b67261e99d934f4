"""
Planar (quadrilateral) trackers.

A planar tracker is moved by a grid of internal feature points that are
estimated like any other point. After each pass a CornerUpdateStrategy
maps the reference geometry onto the features' current positions to
produce the four new corners.
"""

import logging
import math
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import cv2
import numpy as np

from scrubtrack.core.config import PlanarConfig, PointConfig
from scrubtrack.core.diagnostics import DiagnosticsLog
from scrubtrack.tracking.flow import adaptive_window_size
from scrubtrack.tracking.ledger import PositionLedger
from scrubtrack.tracking.types import (
    PlanarCorner,
    PlanarSnapshot,
    PlanarTracker,
    PositionSource,
    TrackingPoint,
    new_id,
)

logger = logging.getLogger(__name__)

CORNER_NAMES = ("tl", "tr", "br", "bl")


@dataclass
class CornerUpdate:
    """Result of mapping reference geometry onto tracked features."""
    corners: list[tuple[float, float]]
    confidence: float
    inliers: int
    total: int
    homography: list[float] | None = None


@runtime_checkable
class CornerUpdateStrategy(Protocol):
    """Computes new corners from reference and current feature positions."""

    def update(
        self,
        reference_corners: list[tuple[float, float]],
        reference_features: dict[str, tuple[float, float]],
        current_features: dict[str, tuple[float, float]],
    ) -> CornerUpdate | None:
        ...


def _paired(
    reference: dict[str, tuple[float, float]],
    current: dict[str, tuple[float, float]],
) -> tuple[np.ndarray, np.ndarray]:
    ids = [fid for fid in current if fid in reference]
    src = np.array([reference[fid] for fid in ids], dtype=np.float64).reshape(-1, 2)
    dst = np.array([current[fid] for fid in ids], dtype=np.float64).reshape(-1, 2)
    return src, dst


class HomographyStrategy:
    """Fit a RANSAC homography and project the reference corners through it."""

    def __init__(self, ransac_threshold: float = 3.0, min_points: int = 4):
        self.ransac_threshold = ransac_threshold
        self.min_points = max(4, min_points)

    def update(self, reference_corners, reference_features, current_features):
        src, dst = _paired(reference_features, current_features)
        if len(src) < self.min_points:
            return None

        try:
            matrix, mask = cv2.findHomography(
                src.astype(np.float32).reshape(-1, 1, 2),
                dst.astype(np.float32).reshape(-1, 1, 2),
                cv2.RANSAC,
                self.ransac_threshold,
                maxIters=2000,
                confidence=0.995,
            )
        except cv2.error as e:
            logger.warning("Homography fit failed: %s", e)
            return None
        if matrix is None or mask is None:
            return None

        corners = np.array(reference_corners, dtype=np.float64).reshape(-1, 1, 2)
        projected = cv2.perspectiveTransform(corners, matrix).reshape(-1, 2)
        if not np.all(np.isfinite(projected)):
            return None

        inliers = int(np.count_nonzero(mask))
        return CornerUpdate(
            corners=[(float(x), float(y)) for x, y in projected],
            confidence=inliers / len(src),
            inliers=inliers,
            total=len(src),
            homography=[float(v) for v in matrix.ravel()],
        )


class CentroidScaleStrategy:
    """
    Move corners with the feature centroid and scale them uniformly.

    Scale is the ratio of mean feature distance from the centroid. Features
    whose residual under that similarity exceeds the threshold count as
    outliers.
    """

    def __init__(self, inlier_threshold: float = 3.0, min_points: int = 3):
        self.inlier_threshold = inlier_threshold
        self.min_points = min_points

    def update(self, reference_corners, reference_features, current_features):
        src, dst = _paired(reference_features, current_features)
        if len(src) < self.min_points:
            return None

        c0 = src.mean(axis=0)
        c1 = dst.mean(axis=0)
        spread0 = float(np.linalg.norm(src - c0, axis=1).mean())
        spread1 = float(np.linalg.norm(dst - c1, axis=1).mean())
        scale = spread1 / spread0 if spread0 > 1e-9 else 1.0

        predicted = c1 + scale * (src - c0)
        residuals = np.linalg.norm(dst - predicted, axis=1)
        inliers = int(np.count_nonzero(residuals <= self.inlier_threshold))

        corners = c1 + scale * (np.array(reference_corners, dtype=np.float64) - c0)
        tx, ty = c1 - scale * c0
        return CornerUpdate(
            corners=[(float(x), float(y)) for x, y in corners],
            confidence=inliers / len(src),
            inliers=inliers,
            total=len(src),
            homography=[scale, 0.0, float(tx), 0.0, scale, float(ty), 0.0, 0.0, 1.0],
        )


def make_strategy(config: PlanarConfig) -> CornerUpdateStrategy:
    """Strategy named by the planar configuration."""
    if config.strategy == "homography":
        return HomographyStrategy(config.ransac_threshold, config.min_features)
    if config.strategy == "centroid":
        return CentroidScaleStrategy(config.ransac_threshold)
    raise ValueError(f"Unknown planar strategy: {config.strategy}")


class PlanarTrackerManager:
    """
    Creates planar trackers and keeps their corners in step with features.

    Example:
        >>> manager = PlanarTrackerManager(ledger)
        >>> tracker = manager.create_planar_tracker(320, 240, size=96, frame=0)
        >>> manager.update_from_features(tracker, frame=1)
    """

    def __init__(
        self,
        ledger: PositionLedger,
        config: PlanarConfig | None = None,
        point_config: PointConfig | None = None,
        strategy: CornerUpdateStrategy | None = None,
        diagnostics: DiagnosticsLog | None = None,
    ):
        self.ledger = ledger
        self.config = config or PlanarConfig()
        self.point_config = point_config or PointConfig()
        self.strategy = strategy or make_strategy(self.config)
        self.diagnostics = diagnostics

    def _log(self, frame: int, operation: str, data: dict, level: str = "debug") -> None:
        if self.diagnostics is not None:
            self.diagnostics.log(frame, operation, data, level)

    def default_size(self, frame_shape: tuple[int, int] | None) -> float:
        if frame_shape is None:
            return self.config.default_size
        return min(frame_shape) * self.config.size_ratio

    def create_planar_tracker(
        self,
        center_x: float,
        center_y: float,
        size: float,
        frame: int,
    ) -> PlanarTracker:
        """Create a square tracker centered on a point, with its feature grid."""
        tracker_id = new_id("planar")
        half = size / 2
        offsets = ((-half, -half), (half, -half), (half, half), (-half, half))
        corners = [
            PlanarCorner(f"{tracker_id}_{name}", center_x + dx, center_y + dy)
            for name, (dx, dy) in zip(CORNER_NAMES, offsets)
        ]
        tracker = PlanarTracker(
            id=tracker_id,
            corners=corners,
            center=(float(center_x), float(center_y)),
            width=float(size),
            height=float(size),
        )
        tracker.feature_points = self.generate_feature_points(tracker, frame)
        self.anchor(tracker)
        self.snapshot(tracker, frame)
        return tracker

    def generate_feature_points(self, tracker: PlanarTracker, frame: int) -> list[TrackingPoint]:
        """Place a grid of feature points inside the quad by bilinear interpolation."""
        rows, cols = self.config.feature_rows, self.config.feature_cols
        (x0, y0), (x1, y1), (x2, y2), (x3, y3) = tracker.corner_positions()
        radius = self.config.feature_search_radius
        features = []
        for row in range(rows):
            v = (row + 1) / (rows + 1)
            for col in range(cols):
                u = (col + 1) / (cols + 1)
                top_x, top_y = x0 + u * (x1 - x0), y0 + u * (y1 - y0)
                bottom_x, bottom_y = x3 + u * (x2 - x3), y3 + u * (y2 - y3)
                x = top_x + v * (bottom_x - top_x)
                y = top_y + v * (bottom_y - top_y)
                point = TrackingPoint(
                    id=f"{tracker.id}_feature_{row}_{col}",
                    x=x,
                    y=y,
                    search_radius=radius,
                    adaptive_window_size=adaptive_window_size(radius, self.point_config),
                    planar_id=tracker.id,
                )
                self.ledger.set_position_at_frame(point, x, y, frame, PositionSource.MANUAL)
                features.append(point)
        return features

    def anchor(self, tracker: PlanarTracker) -> None:
        """Use the current corners and features as the reference geometry."""
        tracker.reference_corners = tracker.corner_positions()
        tracker.reference_features = {f.id: (f.x, f.y) for f in tracker.feature_points}

    def _set_corners(self, tracker: PlanarTracker, corners: list[tuple[float, float]]) -> None:
        for corner, (x, y) in zip(tracker.corners, corners):
            corner.x = x
            corner.y = y
        tracker.center = (
            sum(c.x for c in tracker.corners) / 4,
            sum(c.y for c in tracker.corners) / 4,
        )

    def snapshot(self, tracker: PlanarTracker, frame: int) -> PlanarSnapshot:
        """Record corners and center for a frame (one snapshot per frame)."""
        snap = PlanarSnapshot(
            frame=frame,
            corners=tuple(tracker.corner_positions()),
            center=tracker.center,
        )
        tracker.frame_snapshots[frame] = snap
        for i, existing in enumerate(tracker.trajectory):
            if existing.frame == frame:
                tracker.trajectory[i] = snap
                break
        else:
            tracker.trajectory.append(snap)
            limit = self.point_config.trajectory_length
            if len(tracker.trajectory) > limit:
                del tracker.trajectory[: len(tracker.trajectory) - limit]
        return snap

    def update_from_features(self, tracker: PlanarTracker, frame: int) -> CornerUpdate | None:
        """
        Recompute corners from the tracker's feature points.

        A tracker with too few trustworthy features, or whose fit is too
        weak, is deactivated with zero confidence.
        """
        cfg = self.config
        usable = [
            f for f in tracker.feature_points
            if f.is_active and f.confidence > cfg.min_feature_confidence
        ]
        if len(usable) < cfg.min_features:
            self._deactivate(tracker, frame, "insufficient_features", len(usable))
            return None

        update = self.strategy.update(
            tracker.reference_corners,
            tracker.reference_features,
            {f.id: (f.x, f.y) for f in usable},
        )
        if update is None or update.confidence <= cfg.min_confidence:
            self._deactivate(tracker, frame, "weak_fit", len(usable))
            return None

        self._set_corners(tracker, update.corners)
        tracker.homography = update.homography
        tracker.confidence = update.confidence
        tracker.is_active = True
        self.snapshot(tracker, frame)
        self._log(frame, "PLANAR_UPDATED", {
            "tracker_id": tracker.id,
            "confidence": round(update.confidence, 3),
            "inliers": update.inliers,
            "features": update.total,
        })
        return update

    def _deactivate(self, tracker: PlanarTracker, frame: int, reason: str, usable: int) -> None:
        if tracker.is_active:
            logger.warning("Planar tracker %s deactivated at frame %d (%s)", tracker.id, frame, reason)
        tracker.is_active = False
        tracker.confidence = 0.0
        self._log(frame, "PLANAR_DEACTIVATED", {
            "tracker_id": tracker.id,
            "reason": reason,
            "usable_features": usable,
        }, "warn")

    def update_corner_position(
        self,
        tracker: PlanarTracker,
        corner_index: int,
        x: float,
        y: float,
        frame: int,
    ) -> bool:
        """Move one corner by hand and re-anchor the reference geometry."""
        if not 0 <= corner_index < 4:
            return False
        corners = tracker.corner_positions()
        corners[corner_index] = (float(x), float(y))
        self._set_corners(tracker, corners)
        tracker.is_active = True
        tracker.confidence = 1.0
        self.anchor(tracker)
        self.snapshot(tracker, frame)
        return True

    def snapshot_at(self, tracker: PlanarTracker, frame: int) -> PlanarSnapshot | None:
        """Snapshot for a frame, else the nearest earlier one."""
        snap = tracker.frame_snapshots.get(frame)
        if snap is None:
            earlier = max((f for f in tracker.frame_snapshots if f < frame), default=None)
            if earlier is not None:
                snap = tracker.frame_snapshots[earlier]
        return snap

    def corners_at_frame(self, tracker: PlanarTracker, frame: int) -> list[tuple[float, float]]:
        snap = self.snapshot_at(tracker, frame)
        if snap is None:
            return tracker.corner_positions()
        return list(snap.corners)

    def sync_to_frame(self, tracker: PlanarTracker, frame: int) -> bool:
        """
        Show the tracker as recorded at a frame (or the nearest earlier one).

        Returns:
            False if the tracker has no snapshot at or before the frame
        """
        snap = self.snapshot_at(tracker, frame)
        if snap is None:
            return False
        self._set_corners(tracker, list(snap.corners))
        return True

    def sync_all_to_frame(self, trackers: list[PlanarTracker], frame: int) -> None:
        for tracker in trackers:
            self.sync_to_frame(tracker, frame)

    def is_point_inside(self, tracker: PlanarTracker, x: float, y: float) -> bool:
        """Point-in-quad test using the sign of edge cross products."""
        corners = tracker.corner_positions()
        signs = []
        for i in range(4):
            (xi, yi), (xj, yj) = corners[i], corners[(i + 1) % 4]
            cross = (xj - xi) * (y - yi) - (yj - yi) * (x - xi)
            signs.append(cross)
        return all(s >= 0 for s in signs) or all(s <= 0 for s in signs)

    def corner_index_at(
        self,
        tracker: PlanarTracker,
        x: float,
        y: float,
        threshold: float = 15.0,
    ) -> int:
        """Index of the corner within threshold pixels of (x, y), or -1."""
        for i, corner in enumerate(tracker.corners):
            if math.hypot(corner.x - x, corner.y - y) <= threshold:
                return i
        return -1
