"""
Command line entry point

Inspects native container files and exports them to plain image formats.
"""

import argparse
import json
import os
import logging
import sys
from pathlib import Path

from surfacestore import APP_NAME, APP_VERSION
from surfacestore.models.container import read_trailer
from surfacestore.models.settings_manager import SettingsManager
from surfacestore.models.surface_models import SurfaceOutputError, NotRecognizedContainerError
from surfacestore.models.surface_output import SurfaceOutput, format_for_filename
from surfacestore.models.temp_file_cache import TempFileCache
from surfacestore.utils.logging_config import setup_logging, get_logger


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description=f"{APP_NAME} v{APP_VERSION} - screenshot surface container tool"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"{APP_NAME} {APP_VERSION}"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Set logging level"
    )

    parser.add_argument(
        "--log-dir",
        type=Path,
        help="Directory for log files"
    )

    parser.add_argument(
        "--settings",
        type=Path,
        help="Settings file to use"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    inspect_parser = subparsers.add_parser("inspect", help="Show the container trailer of a file")
    inspect_parser.add_argument("path", type=Path)

    export_parser = subparsers.add_parser("export", help="Export a container to another format")
    export_parser.add_argument("source", type=Path)
    export_parser.add_argument("destination", type=Path)
    export_parser.add_argument("--overwrite", action="store_true", help="Replace an existing file")
    export_parser.add_argument("--quality", type=int, help="JPEG quality (0-100)")
    export_parser.add_argument("--reduce-colors", action="store_true", help="Force a 255 color palette")
    export_parser.add_argument("--background-only", action="store_true",
                               help="Export the image without annotations")

    return parser.parse_args(argv)


def inspect_file(path: Path) -> int:
    """Print the trailer of a container as JSON."""
    with open(path, "rb") as stream:
        trailer = read_trailer(stream)
        size = stream.seek(0, os.SEEK_END)
    info = trailer.to_dict()
    info['file_size'] = size
    print(json.dumps(info, indent=2))
    return 0


def export_file(output: SurfaceOutput, args) -> int:
    """Load a container and save it in the format of the destination name."""
    surface = output.load_surface(str(args.source))

    overrides = {
        'reduce_colors': args.reduce_colors,
        'save_background_only': args.background_only,
    }
    if args.quality is not None:
        overrides['jpeg_quality'] = args.quality

    settings = output.create_output_settings(format_for_filename(str(args.destination)), **overrides)
    saved_path = output.save(surface, str(args.destination), args.overwrite, settings)
    print(saved_path)
    return 0


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code
    """
    args = parse_arguments(argv)

    setup_logging(
        log_dir=args.log_dir,
        log_level=args.log_level,
        enable_console=True,
        enable_json=True
    )
    logger = get_logger(__name__)
    logger.info("Starting %s v%s", APP_NAME, APP_VERSION)

    settings_manager = SettingsManager(settings_file=args.settings)
    tmp_file_cache = TempFileCache(ttl_seconds=settings_manager.output.tmp_file_ttl_seconds)
    output = SurfaceOutput(settings_manager=settings_manager, tmp_file_cache=tmp_file_cache)

    try:
        if args.command == "inspect":
            return inspect_file(args.path)
        return export_file(output, args)
    except NotRecognizedContainerError as e:
        logger.error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except (SurfaceOutputError, OSError, ValueError) as e:
        logger.error("Command %s failed: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        output.shutdown()
        output.remove_tmp_files()
        logging.shutdown()


def run_app():
    """Console script entry point."""
    try:
        return main()
    except KeyboardInterrupt:
        print("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(run_app())
