"""
Shared fixtures for scrubtrack tests.
"""

import cv2
import numpy as np
import pytest

from scrubtrack.tracking.flow import FlowOutput, FlowPrimitiveError


class ScriptedFlowPrimitive:
    """
    Deterministic flow primitive.

    Forward calls move every point by `shift`; backward calls move it back
    and add `back_error` pixels along x, so the forward-backward distance
    is exactly `back_error`. Calls alternate forward/backward the way
    FlowEstimator issues them.
    """

    def __init__(self, shift=(0.0, 0.0), back_error=0.0, status=True, error=1.0, fail=False):
        self.shift = shift
        self.back_error = back_error
        self.status = status
        self.error = error
        self.fail = fail
        self.calls = []

    def estimate_flow(self, prev_frame, curr_frame, points, window_size, max_pyramid_level, criteria):
        if self.fail:
            raise FlowPrimitiveError("scripted failure")
        forward = len(self.calls) % 2 == 0
        self.calls.append({
            "direction": "forward" if forward else "backward",
            "count": len(points),
            "window_size": window_size,
            "level": max_pyramid_level,
        })
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        dx, dy = self.shift
        if forward:
            out = pts + (dx, dy)
        else:
            out = pts - (dx, dy) + (self.back_error, 0.0)
        n = len(pts)
        return FlowOutput(
            positions=out.astype(np.float32),
            status=np.full(n, self.status, dtype=bool),
            errors=np.full(n, self.error, dtype=np.float32),
        )

    @property
    def forward_calls(self):
        return sum(1 for c in self.calls if c["direction"] == "forward")


def make_texture(shape=(200, 200), seed=0):
    """Smooth random texture that Lucas-Kanade can lock onto."""
    rng = np.random.default_rng(seed)
    noise = rng.integers(0, 256, size=shape, dtype=np.uint8)
    blurred = cv2.GaussianBlur(noise, (0, 0), 2.0)
    return cv2.normalize(blurred, None, 0, 255, cv2.NORM_MINMAX)


def shift_frame(frame, dx, dy):
    """Move frame content by whole pixels (content wraps at the borders)."""
    return np.roll(frame, shift=(dy, dx), axis=(0, 1))


@pytest.fixture
def texture():
    return make_texture()


@pytest.fixture
def blank():
    return np.zeros((200, 200), dtype=np.uint8)


@pytest.fixture
def scripted():
    return ScriptedFlowPrimitive()


@pytest.fixture
def make_tracker():
    """Factory for initialized orchestrators driven by a scripted primitive."""
    from scrubtrack.tracking.orchestrator import TrackerOrchestrator

    def factory(primitive=None, config=None):
        tracker = TrackerOrchestrator(config=config, flow_primitive=primitive or ScriptedFlowPrimitive())
        assert tracker.initialize() is True
        return tracker

    return factory
