"""Entry point: CLI argument parsing + session + uvicorn startup."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from trajflow.capture.image_source import read_image
from trajflow.config import load_config
from trajflow.recording.models import Extent
from trajflow.session import AnalysisSession
from trajflow.web.app import create_app


def setup_logging(log_dir: str, verbose: bool = False) -> None:
    """Configure logging to both console and file."""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    logging.basicConfig(
        level=level,
        format=fmt,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_path / "trajflow.log"),
        ],
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Traffic flow measurement from time-space trajectory diagrams"
    )
    parser.add_argument(
        "-c", "--config",
        default="config/default.yaml",
        help="Path to YAML config file (default: config/default.yaml)",
    )
    parser.add_argument(
        "-i", "--image",
        default=None,
        help="Trajectory diagram to load at startup",
    )
    parser.add_argument(
        "--temporal",
        type=float,
        default=None,
        help="Minutes covered by the image width (overrides config)",
    )
    parser.add_argument(
        "--spatial",
        type=float,
        default=None,
        help="Meters covered by the image height (overrides config)",
    )
    parser.add_argument(
        "--extract-only",
        action="store_true",
        help="Extract trajectories from --image, report the count and exit",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Web server host (overrides config)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Web server port (overrides config)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    # Load configuration
    config = load_config(args.config)

    # Apply CLI overrides
    if args.temporal:
        config.extent.temporal = args.temporal
    if args.spatial:
        config.extent.spatial = args.spatial
    if args.host:
        config.web.host = args.host
    if args.port:
        config.web.port = args.port

    setup_logging(config.recording.log_dir, args.verbose)
    logger = logging.getLogger(__name__)
    logger.info("Starting Trajectory Flow Analyzer")

    session = AnalysisSession(config, config_path=args.config)

    if args.image:
        extent = Extent(config.extent.temporal, config.extent.spatial)
        trajectories = session.load_image(read_image(args.image), extent)
        logger.info("Loaded %s: %d trajectories", args.image, len(trajectories))
    elif args.extract_only:
        logger.error("--extract-only requires --image")
        sys.exit(2)

    if args.extract_only:
        return

    app = create_app(session)
    logger.info("Web API: http://%s:%d", config.web.host, config.web.port)

    try:
        uvicorn.run(
            app,
            host=config.web.host,
            port=config.web.port,
            log_level="info",
            loop="asyncio",
        )
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
