"""
scrubtrack Command Line Interface

Usage:
    scrubtrack <command> [options]

Commands:
    track       Track points (and planar regions) through a video
    config      Create or inspect a tracking configuration

Examples:
    scrubtrack track input.mp4 -p 320,240 -p 400,180 -fs 10 -fe 200
    scrubtrack track input.mp4 -p 320,240 -fe 200 --backward -o tracks
    scrubtrack track input.mp4 -P 640,360,150 -c tracking.json
    scrubtrack config --create tracking.json
"""

import sys
import argparse
import logging
from pathlib import Path

from scrubtrack import __version__


def parse_point(value: str) -> tuple[float, float]:
    """Parse an "X,Y" command line argument."""
    parts = value.split(',')
    if len(parts) != 2:
        raise argparse.ArgumentTypeError(f"Expected X,Y but got '{value}'")
    try:
        return float(parts[0]), float(parts[1])
    except ValueError:
        raise argparse.ArgumentTypeError(f"Non-numeric point '{value}'") from None


def parse_planar(value: str) -> tuple[float, float, float | None]:
    """Parse a "CX,CY[,SIZE]" command line argument."""
    parts = value.split(',')
    if len(parts) not in (2, 3):
        raise argparse.ArgumentTypeError(f"Expected CX,CY[,SIZE] but got '{value}'")
    try:
        numbers = [float(p) for p in parts]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Non-numeric planar region '{value}'") from None
    size = numbers[2] if len(numbers) == 3 else None
    return numbers[0], numbers[1], size


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='scrubtrack',
        description='Interactive point and planar tracking for video',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        '-V', '--version',
        action='version',
        version=f'scrubtrack {__version__}',
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Track command
    track_parser = subparsers.add_parser(
        'track',
        help='Track points through a video',
    )
    track_parser.add_argument('input', help='Input video file')
    track_parser.add_argument(
        '-p', '--point',
        action='append',
        dest='points',
        type=parse_point,
        default=[],
        metavar='X,Y',
        help='Point to track on the anchor frame (can be used multiple times)',
    )
    track_parser.add_argument(
        '-P', '--planar',
        action='append',
        dest='planars',
        type=parse_planar,
        default=[],
        metavar='CX,CY[,SIZE]',
        help='Planar region centered on a point (can be used multiple times)',
    )
    track_parser.add_argument(
        '-r', '--radius',
        type=float,
        default=None,
        help='Search radius in pixels (default: from config)',
    )
    track_parser.add_argument(
        '-fs', '--frame-start',
        type=int,
        default=0,
        help='First frame to track, 0-based (default: 0)',
    )
    track_parser.add_argument(
        '-fe', '--frame-end',
        type=int,
        default=None,
        help='Last frame to track (default: end of video)',
    )
    track_parser.add_argument(
        '--backward',
        action='store_true',
        help='Anchor on the end frame and track toward the start frame',
    )
    track_parser.add_argument(
        '-c', '--config',
        default=None,
        help='Tracking configuration file (JSON)',
    )
    track_parser.add_argument(
        '-o', '--output-dir',
        default='.',
        help='Directory for .crv files (default: current directory)',
    )
    track_parser.add_argument(
        '--prefix',
        default='track',
        help='Output filename prefix (default: track)',
    )
    track_parser.add_argument(
        '-d', '--diagnostics',
        default=None,
        metavar='FILE',
        help='Write the recent diagnostics events to a JSON file',
    )
    track_parser.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Suppress progress output',
    )
    track_parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable debug logging',
    )

    # Config command
    config_parser = subparsers.add_parser(
        'config',
        help='Create or inspect a tracking configuration',
    )
    config_parser.add_argument(
        '--create',
        metavar='PATH',
        help='Write a configuration file populated with the defaults',
    )
    config_parser.add_argument(
        '--show',
        metavar='PATH',
        nargs='?',
        const='',
        help='Print the effective configuration (file plus environment)',
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == 'track':
        return run_track(args)
    elif args.command == 'config':
        return run_config(args)
    else:
        parser.print_help()
        return 1


def _configure_logging(verbose: bool, quiet: bool) -> None:
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')


def _load_config(path: str | None):
    from scrubtrack.core.config import TrackingConfig, apply_env_overrides, load_config

    config = load_config(path) if path else TrackingConfig()
    return apply_env_overrides(config)


def run_track(args) -> int:
    """Run point tracking command."""
    from scrubtrack.core.video import VideoFrameSource
    from scrubtrack.tracking import TrackerOrchestrator, track_backward, track_forward
    from scrubtrack.tracking.track_io import export_point_tracks

    _configure_logging(args.verbose, args.quiet)

    if not args.points and not args.planars:
        print("Error: give at least one point (-p X,Y) or planar region (-P CX,CY)", file=sys.stderr)
        return 1

    try:
        config = _load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    tracker = TrackerOrchestrator(config)
    if not tracker.initialize():
        print("Error: optical flow is unavailable in this OpenCV build", file=sys.stderr)
        return 1

    def progress(frame, points):
        if not args.quiet:
            print(f"\rFrame {frame}: {len(points)} active", end='')

    try:
        with VideoFrameSource(args.input) as source:
            last = source.frame_count - 1
            start = max(0, args.frame_start)
            end = last if args.frame_end is None else min(args.frame_end, last)
            if end < start:
                print(f"Error: empty frame range {start}..{end}", file=sys.stderr)
                return 1

            anchor, stop = (end, start) if args.backward else (start, end)
            tracker.set_current_frame(anchor)
            point_ids = [tracker.add_point(x, y, args.radius) for x, y in args.points]

            # Planar trackers default to a size relative to the frame, so the
            # frame store must hold the anchor frame first.
            if args.planars:
                first = source.read(anchor)
                if first is not None:
                    tracker.ingest_frame(first, frame=anchor)
            planar_ids = [tracker.add_planar_tracker(cx, cy, size) for cx, cy, size in args.planars]

            if not args.quiet:
                direction = "backward" if args.backward else "forward"
                print(f"Tracking {args.input} {direction} from frame {anchor} to {stop}")

            if args.backward:
                result = track_backward(tracker, source, anchor, stop, on_frame=progress)
            else:
                result = track_forward(tracker, source, anchor, stop, on_frame=progress)
    except (FileNotFoundError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    tracks = {pid: tracker.get_frame_positions(pid) for pid in point_ids}
    written = export_point_tracks(tracks, args.output_dir, args.prefix)
    written += _export_planar_corners(tracker, planar_ids, args.output_dir, args.prefix)

    if args.diagnostics:
        Path(args.diagnostics).write_text(tracker.diagnostics.export_json())

    if not args.quiet:
        print(f"\nTracked {result.frames_processed} frames; wrote {len(written)} file(s)")
        if result.failed_frame is not None:
            print(f"Stopped early: frame {result.failed_frame} could not be read")
    return 0


def _export_planar_corners(tracker, planar_ids, output_dir, prefix) -> list[Path]:
    """Write one .crv file per planar tracker corner."""
    from scrubtrack.tracking.planar import CORNER_NAMES
    from scrubtrack.tracking.track_io import write_crv_file

    written = []
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    trackers = {t.id: t for t in tracker.get_planar_trackers()}
    for index, planar_id in enumerate(planar_ids, 1):
        planar = trackers.get(planar_id)
        if planar is None:
            continue
        for corner, name in enumerate(CORNER_NAMES):
            data = {f: snap.corners[corner] for f, snap in planar.frame_snapshots.items()}
            path = output_dir / f"{prefix}_planar{index:02d}_{name}.crv"
            written.append(write_crv_file(path, data))
    return written


def run_config(args) -> int:
    """Run configuration command."""
    import json

    from scrubtrack.core.config import create_example_config

    if args.create:
        create_example_config(args.create)
        print(f"Wrote default configuration to {args.create}")
        return 0

    if args.show is not None:
        try:
            config = _load_config(args.show or None)
        except (FileNotFoundError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(json.dumps(config.to_dict(), indent=2))
        return 0

    print("Nothing to do: use --create PATH or --show [PATH]")
    return 1


if __name__ == '__main__':
    sys.exit(main())
