"""
Track data I/O utilities.

Point tracks are exchanged as .crv files, one point per file, one frame
per line:

    FRAME [[ x, y]]

The plain "FRAME x y" layout is accepted on read as well.
"""

import logging
import re
from pathlib import Path
from typing import Iterable, Iterator

logger = logging.getLogger(__name__)

_NUMBER = r'(-?\d+(?:\.\d*)?(?:[eE][-+]?\d+)?)'

# FRAME [[ x, y ]]
CRV_PATTERN = re.compile(rf'^(\d+)\s*\[\[\s*{_NUMBER}\s*,\s*{_NUMBER}\s*\]\]')

# FRAME x y
SIMPLE_PATTERN = re.compile(rf'^(\d+)\s+{_NUMBER}\s+{_NUMBER}')


def parse_track_line(line: str) -> tuple[int, float, float] | None:
    """
    Parse one line of track data.

    Returns:
        Tuple of (frame, x, y), or None for blank or unrecognized lines
    """
    line = line.strip()
    if not line:
        return None
    match = CRV_PATTERN.match(line) or SIMPLE_PATTERN.match(line)
    if match is None:
        return None
    return int(match.group(1)), float(match.group(2)), float(match.group(3))


def iter_crv_file(path: str | Path) -> Iterator[tuple[int, float, float]]:
    """Yield (frame, x, y) for each parsable line of a track file."""
    path = Path(path)
    with open(path, 'r') as f:
        for lineno, line in enumerate(f, 1):
            parsed = parse_track_line(line)
            if parsed is None:
                if line.strip():
                    logger.debug("%s:%d: skipping unparsable line", path.name, lineno)
                continue
            yield parsed


def read_crv_file(path: str | Path) -> dict[int, tuple[float, float]]:
    """
    Read a track file into a frame -> (x, y) mapping.

    Later lines win when a frame appears twice.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Track file not found: {path}")
    return {frame: (x, y) for frame, x, y in iter_crv_file(path)}


def write_crv_file(
    path: str | Path,
    data: dict[int, tuple[float, float]] | Iterable[tuple[int, float, float]],
) -> Path:
    """
    Write a track file, sorted by frame.

    Args:
        path: Output path
        data: Mapping frame -> (x, y), or (frame, x, y) tuples
    """
    path = Path(path)
    if isinstance(data, dict):
        rows = [(frame, xy[0], xy[1]) for frame, xy in data.items()]
    else:
        rows = list(data)
    rows.sort(key=lambda row: row[0])

    with open(path, 'w') as f:
        for frame, x, y in rows:
            f.write(f"{frame} [[ {x}, {y}]]\n")
    return path


def get_crv_frame_range(path: str | Path) -> tuple[int, int]:
    """
    First and last frame of a track file, in file order.

    Raises:
        ValueError: If the file holds no track data
    """
    first = last = None
    for frame, _, _ in iter_crv_file(path):
        if first is None:
            first = frame
        last = frame
    if first is None:
        raise ValueError(f"No valid data in {path}")
    return first, last


def export_point_tracks(
    tracks: dict[str, dict[int, tuple[float, float]]],
    output_dir: str | Path,
    prefix: str = "track",
) -> list[Path]:
    """
    Write one numbered track file per point.

    Points with no recorded positions are skipped.

    Args:
        tracks: Point id -> frame positions, in output order
        output_dir: Directory to write into (created if missing)
        prefix: Filename prefix, files are named <prefix>01.crv, ...

    Returns:
        Paths written
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for index, (point_id, positions) in enumerate(tracks.items(), 1):
        if not positions:
            logger.warning("Point %s has no positions; not exported", point_id)
            continue
        written.append(write_crv_file(output_dir / f"{prefix}{index:02d}.crv", positions))
    return written
