"""
Adaptive multi-resolution optical flow with bidirectional verification.

The numerical Lucas-Kanade routine is consumed through the FlowPrimitive
protocol. FlowEstimator batches points by pyramid level, runs a forward
estimate and a backward estimate seeded at the forward result, and
accepts a point only if it returns near its origin, stays within its
motion bound and has an acceptable matching error.
"""

import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol, runtime_checkable

import cv2
import numpy as np

from scrubtrack.core.config import FlowConfig, PointConfig, QualityConfig
from scrubtrack.core.diagnostics import DiagnosticsLog
from scrubtrack.tracking.types import TrackingPoint

logger = logging.getLogger(__name__)


class FlowPrimitiveError(RuntimeError):
    """Raised by a flow primitive when an estimation call fails as a whole."""


@dataclass(frozen=True)
class FlowCriteria:
    """Iteration stop criteria for the flow primitive."""
    max_iterations: int = 30
    epsilon: float = 0.01


@dataclass
class FlowOutput:
    """Raw output of one flow primitive call."""
    positions: np.ndarray   # (N, 2) float32
    status: np.ndarray      # (N,) bool
    errors: np.ndarray      # (N,) float32


def _check_output(output: FlowOutput, count: int, direction: str) -> None:
    """Raise FlowPrimitiveError unless every output array covers all points."""
    sizes = (len(output.positions), len(output.status), len(output.errors))
    if any(size != count for size in sizes):
        raise FlowPrimitiveError(
            f"{direction} flow returned {sizes} entries for {count} points"
        )


@runtime_checkable
class FlowPrimitive(Protocol):
    """Stateless optical flow routine."""

    def estimate_flow(
        self,
        prev_frame: np.ndarray,
        curr_frame: np.ndarray,
        points: np.ndarray,
        window_size: int,
        max_pyramid_level: int,
        criteria: FlowCriteria,
    ) -> FlowOutput:
        ...


class OpenCVFlowPrimitive:
    """FlowPrimitive backed by cv2.calcOpticalFlowPyrLK."""

    def __init__(self, min_eig_threshold: float = 1e-4):
        self.min_eig_threshold = min_eig_threshold

    def estimate_flow(
        self,
        prev_frame: np.ndarray,
        curr_frame: np.ndarray,
        points: np.ndarray,
        window_size: int,
        max_pyramid_level: int,
        criteria: FlowCriteria,
    ) -> FlowOutput:
        p0 = np.ascontiguousarray(points, dtype=np.float32).reshape(-1, 1, 2)
        term = (
            cv2.TERM_CRITERIA_EPS | cv2.TERM_CRITERIA_COUNT,
            criteria.max_iterations,
            criteria.epsilon,
        )
        try:
            p1, status, err = cv2.calcOpticalFlowPyrLK(
                prev_frame,
                curr_frame,
                p0,
                None,
                winSize=(window_size, window_size),
                maxLevel=max_pyramid_level,
                criteria=term,
                minEigThreshold=self.min_eig_threshold,
            )
        except cv2.error as e:
            raise FlowPrimitiveError(f"calcOpticalFlowPyrLK failed: {e}") from e

        n = len(p0)
        if p1 is None:
            raise FlowPrimitiveError("calcOpticalFlowPyrLK returned no points")
        return FlowOutput(
            positions=p1.reshape(n, 2).astype(np.float32),
            status=status.reshape(n).astype(bool),
            errors=err.reshape(n).astype(np.float32),
        )


@lru_cache(maxsize=None)
def load_flow_primitive(min_eig_threshold: float = 1e-4) -> OpenCVFlowPrimitive | None:
    """
    Negotiate the optical flow capability once per process.

    Args:
        min_eig_threshold: Minimum eigenvalue below which OpenCV drops a point

    Returns:
        A primitive handle, or None if the loaded OpenCV build lacks
        pyramidal Lucas-Kanade
    """
    if not hasattr(cv2, "calcOpticalFlowPyrLK"):
        logger.error("OpenCV build has no calcOpticalFlowPyrLK; tracking unavailable")
        return None
    logger.debug("Using OpenCV %s for optical flow", getattr(cv2, "__version__", "?"))
    return OpenCVFlowPrimitive(min_eig_threshold)


def adaptive_window_size(search_radius: float, config: PointConfig | None = None) -> int:
    """Flow window size for a search radius, clamped and forced odd."""
    config = config or PointConfig()
    size = int(round(search_radius * config.window_ratio))
    size = max(config.min_window_size, min(config.max_window_size, size))
    if size % 2 == 0:
        size += 1
    return size


def optimal_pyramid_level(search_radius: float, config: FlowConfig | None = None) -> int:
    """
    Pyramid depth for a search radius.

    Small radii stay near full resolution; large radii get more levels so
    coarse-to-fine estimation can reach fast motion.
    """
    config = config or FlowConfig()
    if search_radius <= config.level_one_max_radius:
        level = 1
    elif search_radius <= config.level_two_max_radius:
        level = 2
    else:
        level = 3
    return min(level, config.max_pyramid_level)


def consistency_threshold(search_radius: float, quality: QualityConfig) -> float:
    return max(quality.consistency_min_px, search_radius * quality.consistency_ratio)


def movement_limit(search_radius: float, quality: QualityConfig) -> float:
    limit = search_radius * quality.movement_ratio
    if quality.max_movement_px > 0:
        limit = min(limit, quality.max_movement_px)
    return limit


def error_limit(confidence: float, recently_manual: bool, quality: QualityConfig) -> float:
    """Maximum acceptable matching error, relaxed for trusted points."""
    limit = quality.base_max_error
    if confidence >= quality.high_confidence:
        limit = quality.base_max_error * quality.high_confidence_error_scale
    if recently_manual:
        limit = quality.base_max_error * quality.recent_manual_error_scale
    return limit


@dataclass
class FlowResult:
    """Accept/reject verdict for one point."""
    point_id: str
    accepted: bool
    x: float
    y: float
    error: float
    fb_error: float
    distance: float
    reason: str = ""


def evaluate_estimate(
    origin: tuple[float, float],
    forward: tuple[float, float],
    back_projection: tuple[float, float],
    forward_ok: bool,
    backward_ok: bool,
    error: float,
    search_radius: float,
    confidence: float,
    recently_manual: bool,
    frame_shape: tuple[int, int],
    quality: QualityConfig,
) -> tuple[bool, str, float, float]:
    """
    Decide whether a forward estimate is trustworthy.

    Returns:
        Tuple of (accepted, reason, fb_error, distance). reason is empty
        when accepted.
    """
    x0, y0 = origin
    x1, y1 = forward
    height, width = frame_shape

    valid = (
        math.isfinite(x1) and math.isfinite(y1)
        and 0 <= x1 < width and 0 <= y1 < height
    )
    if not valid:
        return False, "invalid_position", math.inf, math.inf

    distance = math.hypot(x1 - x0, y1 - y0)
    bx, by = back_projection
    if math.isfinite(bx) and math.isfinite(by):
        fb_error = math.hypot(bx - x0, by - y0)
    else:
        fb_error = math.inf

    if distance > movement_limit(search_radius, quality):
        return False, "moved_too_far", fb_error, distance

    if not backward_ok or fb_error > consistency_threshold(search_radius, quality):
        return False, "inconsistent", fb_error, distance

    very_low = error < quality.very_low_error
    if not forward_ok and not very_low:
        return False, "status_failed", fb_error, distance

    if not very_low and error >= error_limit(confidence, recently_manual, quality):
        return False, "error_too_high", fb_error, distance

    return True, "", fb_error, distance


class FlowEstimator:
    """
    Batch estimator for point displacements between two frames.

    Example:
        >>> estimator = FlowEstimator(load_flow_primitive())
        >>> results = estimator.estimate(points, prev_gray, curr_gray, frame=12)
        >>> accepted = [r for r in results if r.accepted]
    """

    def __init__(
        self,
        primitive: FlowPrimitive,
        flow_config: FlowConfig | None = None,
        quality_config: QualityConfig | None = None,
        diagnostics: DiagnosticsLog | None = None,
    ):
        self.primitive = primitive
        self.flow_config = flow_config or FlowConfig()
        self.quality = quality_config or QualityConfig()
        self.diagnostics = diagnostics
        self.criteria = FlowCriteria(
            max_iterations=self.flow_config.max_iterations,
            epsilon=self.flow_config.epsilon,
        )

    def _log(self, frame: int, operation: str, data: dict, level: str = "debug") -> None:
        if self.diagnostics is not None:
            self.diagnostics.log(frame, operation, data, level)

    def group_by_level(self, points: list[TrackingPoint]) -> dict[int, list[int]]:
        """Indices of points grouped by their optimal pyramid level."""
        groups: dict[int, list[int]] = {}
        for i, point in enumerate(points):
            level = optimal_pyramid_level(point.search_radius, self.flow_config)
            groups.setdefault(level, []).append(i)
        return dict(sorted(groups.items()))

    def estimate(
        self,
        points: list[TrackingPoint],
        prev_gray: np.ndarray | None,
        curr_gray: np.ndarray | None,
        frame: int = 0,
        recent_manual_ids: frozenset[str] | set[str] = frozenset(),
    ) -> list[FlowResult]:
        """
        Estimate new positions for a batch of points.

        Args:
            points: Points to estimate, starting from their live positions
            prev_gray: Frame the live positions refer to
            curr_gray: Frame to estimate positions in
            frame: Frame index, for diagnostics
            recent_manual_ids: Ids of points placed by the user very recently

        Returns:
            One FlowResult per point in input order; empty when there are no
            points or the frame pair is missing
        """
        if not points or prev_gray is None or curr_gray is None:
            return []

        results: list[FlowResult | None] = [None] * len(points)
        for level, indices in self.group_by_level(points).items():
            group = [points[i] for i in indices]
            window = max(p.adaptive_window_size for p in group)
            for i, result in zip(indices, self._estimate_group(
                group, prev_gray, curr_gray, level, window, frame, recent_manual_ids,
            )):
                results[i] = result

        accepted = sum(1 for r in results if r.accepted)
        self._log(frame, "FLOW_SUMMARY", {
            "points": len(points),
            "accepted": accepted,
            "rejected": len(points) - accepted,
        })
        return results

    def _estimate_group(
        self,
        group: list[TrackingPoint],
        prev_gray: np.ndarray,
        curr_gray: np.ndarray,
        level: int,
        window: int,
        frame: int,
        recent_manual_ids,
    ) -> list[FlowResult]:
        origins = np.array([[p.x, p.y] for p in group], dtype=np.float32)

        try:
            forward = self.primitive.estimate_flow(
                prev_gray, curr_gray, origins, window, level, self.criteria,
            )
            _check_output(forward, len(group), "forward")
            backward = self.primitive.estimate_flow(
                curr_gray, prev_gray, forward.positions, window, level, self.criteria,
            )
            _check_output(backward, len(group), "backward")
        except FlowPrimitiveError as e:
            logger.warning("Flow estimation failed at frame %d (level %d): %s", frame, level, e)
            self._log(frame, "FLOW_EXCEPTION", {"level": level, "error": str(e)}, "warn")
            return [
                FlowResult(p.id, False, p.x, p.y, math.inf, math.inf, math.inf, "flow_exception")
                for p in group
            ]

        frame_shape = curr_gray.shape[:2]
        results = []
        for i, point in enumerate(group):
            fx, fy = (float(v) for v in forward.positions[i])
            bx, by = (float(v) for v in backward.positions[i])
            error = float(forward.errors[i])
            recently_manual = point.id in recent_manual_ids
            accepted, reason, fb_error, distance = evaluate_estimate(
                origin=(point.x, point.y),
                forward=(fx, fy),
                back_projection=(bx, by),
                forward_ok=bool(forward.status[i]),
                backward_ok=bool(backward.status[i]),
                error=error,
                search_radius=point.search_radius,
                confidence=point.confidence,
                recently_manual=recently_manual,
                frame_shape=frame_shape,
                quality=self.quality,
            )
            results.append(FlowResult(
                point_id=point.id,
                accepted=accepted,
                x=fx,
                y=fy,
                error=error,
                fb_error=fb_error,
                distance=distance,
                reason=reason,
            ))
            self._log(frame, "FLOW_DECISION", {
                "point_id": point.id,
                "level": level,
                "window": window,
                "accepted": accepted,
                "reason": reason,
                "error": round(error, 2),
                "fb_error": round(fb_error, 3) if math.isfinite(fb_error) else None,
                "distance": round(distance, 2) if math.isfinite(distance) else None,
            })
        return results
