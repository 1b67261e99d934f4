"""
Configuration management for scrubtrack.

Every numeric threshold used by the tracking pipeline lives here. The
defaults are empirically tuned values, not invariants: load a JSON file
or set environment variables to override them.

Example:
    config = load_config("tracking.json")
    config = apply_env_overrides(config)   # SCRUBTRACK_QUALITY__BASE_MAX_ERROR=20
    tracker = TrackerOrchestrator(config)
"""

import json
import os
from dataclasses import dataclass, field, asdict, fields, replace
from pathlib import Path
from typing import Any


@dataclass
class PointConfig:
    """Defaults and bounds for user-placed tracking points."""
    default_search_radius: float = 75.0
    min_search_radius: float = 25.0
    max_search_radius: float = 140.0
    window_ratio: float = 0.22      # adaptive window = radius * ratio
    min_window_size: int = 9
    max_window_size: int = 41
    trajectory_length: int = 100


@dataclass
class FlowConfig:
    """Pyramidal Lucas-Kanade parameters."""
    max_iterations: int = 30
    epsilon: float = 0.01
    min_eig_threshold: float = 1e-4
    # search radius upper bounds for pyramid levels 1 and 2; anything larger uses level 3
    level_one_max_radius: float = 40.0
    level_two_max_radius: float = 90.0
    max_pyramid_level: int = 3


@dataclass
class QualityConfig:
    """Accept/reject thresholds applied to each flow estimate."""
    base_max_error: float = 15.0
    very_low_error: float = 5.0
    high_confidence: float = 0.8
    high_confidence_error_scale: float = 1.5
    recent_manual_error_scale: float = 2.0
    recent_manual_frames: int = 2
    consistency_ratio: float = 0.1
    consistency_min_px: float = 1.0
    movement_ratio: float = 0.6
    max_movement_px: float = 60.0


@dataclass
class ConfidenceConfig:
    """Confidence bookkeeping for points."""
    success_gain: float = 0.1
    failure_decay: float = 0.75
    recent_manual_failure_decay: float = 0.9
    deactivation_threshold: float = 0.1
    reactivation_floor: float = 0.5
    frame_skip_tolerance: int = 1
    frame_skip_decay: float = 0.85
    frame_skip_floor: float = 0.3


@dataclass
class PlanarConfig:
    """Planar tracker geometry and quality settings."""
    size_ratio: float = 0.2          # quad side relative to the smaller frame dimension
    default_size: float = 100.0      # used when no frame has been ingested yet
    feature_rows: int = 3
    feature_cols: int = 4
    feature_search_radius: float = 50.0
    min_features: int = 4
    min_feature_confidence: float = 0.3
    min_confidence: float = 0.3
    ransac_threshold: float = 3.0
    strategy: str = "homography"     # "homography" or "centroid"


@dataclass
class TrackingConfig:
    """
    Main configuration container.

    Example:
        config = TrackingConfig.load("tracking.json")
        config.quality.base_max_error = 20.0
        config.save("tracking.json")
    """
    points: PointConfig = field(default_factory=PointConfig)
    flow: FlowConfig = field(default_factory=FlowConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    planar: PlanarConfig = field(default_factory=PlanarConfig)
    diagnostics_capacity: int = 100

    @classmethod
    def load(cls, path: str | Path) -> "TrackingConfig":
        """Load configuration from a JSON file."""
        return load_config(path)

    def save(self, path: str | Path) -> None:
        """Save configuration to a JSON file."""
        save_config(self, path)

    def to_dict(self) -> dict:
        """Convert configuration to a dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackingConfig":
        """Build a configuration from a (possibly partial) dictionary."""
        config = cls()
        for section in _SECTIONS:
            section_data = data.get(section, {})
            if section_data:
                setattr(config, section, _update_section(getattr(config, section), section_data))
        if "diagnostics_capacity" in data:
            config.diagnostics_capacity = int(data["diagnostics_capacity"])
        return config


_SECTIONS = ("points", "flow", "quality", "confidence", "planar")


def _update_section(section: Any, data: dict[str, Any]) -> Any:
    """Return a copy of a config section with known keys replaced."""
    known = {f.name: f for f in fields(section)}
    changes = {}
    for key, value in data.items():
        if key not in known:
            raise ValueError(f"Unknown configuration key: {type(section).__name__}.{key}")
        default = getattr(section, key)
        changes[key] = _coerce(value, default)
    return replace(section, **changes)


def _coerce(value: Any, default: Any) -> Any:
    """Coerce a JSON or environment value to the type of the default."""
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def load_config(path: str | Path) -> TrackingConfig:
    """
    Load configuration from a JSON file.

    Args:
        path: Path to the JSON configuration file

    Returns:
        Parsed TrackingConfig object

    Raises:
        FileNotFoundError: If the config file doesn't exist
        json.JSONDecodeError: If the JSON is invalid
        ValueError: If the file names an unknown setting
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r") as f:
        data = json.load(f)

    return TrackingConfig.from_dict(data)


def save_config(config: TrackingConfig, path: str | Path) -> None:
    """
    Save configuration to a JSON file.

    Args:
        config: Configuration object to save
        path: Output path for the JSON file
    """
    path = Path(path)
    with open(path, "w") as f:
        json.dump(config.to_dict(), f, indent=2)


def create_example_config(path: str | Path = "tracking.json") -> TrackingConfig:
    """
    Create an example configuration file populated with the defaults.

    Args:
        path: Output path for the example config

    Returns:
        The created TrackingConfig object
    """
    config = TrackingConfig()
    config.save(path)
    return config


def get_env_config(prefix: str = "SCRUBTRACK_") -> dict[str, Any]:
    """
    Get configuration from environment variables.

    All environment variables starting with the prefix will be included.
    Variable names are converted to lowercase with the prefix removed.

    Example:
        SCRUBTRACK_QUALITY__BASE_MAX_ERROR=20 -> {"quality__base_max_error": "20"}
    """
    config = {}
    for key, value in os.environ.items():
        if key.startswith(prefix):
            config_key = key[len(prefix):].lower()
            config[config_key] = value
    return config


def apply_env_overrides(
    config: TrackingConfig,
    prefix: str = "SCRUBTRACK_",
) -> TrackingConfig:
    """
    Apply SECTION__FIELD environment overrides on top of a configuration.

    Keys that do not name a known section are ignored, keys that name a
    known section but an unknown field raise ValueError.
    """
    nested: dict[str, Any] = {}
    for key, value in get_env_config(prefix).items():
        section, sep, name = key.partition("__")
        if not sep:
            if section == "diagnostics_capacity":
                nested[section] = value
            continue
        if section in _SECTIONS:
            nested.setdefault(section, {})[name] = value

    if not nested:
        return config

    merged = config.to_dict()
    for section, values in nested.items():
        if isinstance(values, dict):
            merged[section].update(values)
        else:
            merged[section] = values
    return TrackingConfig.from_dict(merged)
