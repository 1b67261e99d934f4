"""
Core module - Configuration, diagnostics, and frame sources.
"""

from scrubtrack.core.base import ArrayFrameSource, FrameSource, TrackingDataProvider
from scrubtrack.core.config import (
    ConfidenceConfig,
    FlowConfig,
    PlanarConfig,
    PointConfig,
    QualityConfig,
    TrackingConfig,
    apply_env_overrides,
    create_example_config,
    get_env_config,
    load_config,
    save_config,
)
from scrubtrack.core.diagnostics import DiagnosticEvent, DiagnosticsLog
from scrubtrack.core.video import VideoFrameSource, VideoProperties, get_video_properties

__all__ = [
    "ArrayFrameSource",
    "FrameSource",
    "TrackingDataProvider",
    "ConfidenceConfig",
    "FlowConfig",
    "PlanarConfig",
    "PointConfig",
    "QualityConfig",
    "TrackingConfig",
    "apply_env_overrides",
    "create_example_config",
    "get_env_config",
    "load_config",
    "save_config",
    "DiagnosticEvent",
    "DiagnosticsLog",
    "VideoFrameSource",
    "VideoProperties",
    "get_video_properties",
]
