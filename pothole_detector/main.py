"""Entry point: CLI argument parsing + pipeline + uvicorn startup."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import uvicorn

from pothole_detector.capture.source import load_samples
from pothole_detector.config import AppConfig, load_config
from pothole_detector.pipeline import Pipeline
from pothole_detector.web.app import create_app


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
            logging.FileHandler(log_path / "pothole_detector.log"),
        ],
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Accelerometer-based pothole detection service"
    )
    parser.add_argument(
        "-c", "--config",
        default="config/default.yaml",
        help="Path to YAML config file (default: config/default.yaml)",
    )
    parser.add_argument(
        "-s", "--samples",
        default=None,
        help="CSV recording to replay (overrides config)",
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
        "--no-web",
        action="store_true",
        help="Replay the samples offline, print the detections and exit",
    )
    parser.add_argument(
        "--autostart",
        action="store_true",
        help="Start a detection session immediately",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def run_offline(config: AppConfig) -> int:
    """Replay config.source.path through a fresh pipeline and print a summary."""
    logger = logging.getLogger(__name__)
    if not config.source.path:
        logger.error("--no-web requires a samples file (-s/--samples)")
        return 2

    messages = load_samples(config.source.path)
    source_path = config.source.path
    # The pipeline must not start its own replay thread here
    config.source.path = ""
    pipeline = Pipeline(config)
    try:
        session = pipeline.start_detection()
        if session is None:
            return 1
        events = pipeline.replay(messages)
        pipeline.stop_detection()
        for event in events:
            print(json.dumps(event.to_dict()))
        logger.info("Replayed %s: %d detections in session %s",
                    source_path, len(events), session.session_id)
    finally:
        pipeline.stop()
    return 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    # Load configuration
    config = load_config(args.config)

    # Apply CLI overrides
    if args.samples:
        config.source.path = args.samples
    if args.host:
        config.web.host = args.host
    if args.port:
        config.web.port = args.port

    # Setup logging
    setup_logging(config.recording.log_dir, args.verbose)
    logger = logging.getLogger(__name__)

    if args.no_web:
        sys.exit(run_offline(config))

    logger.info("Starting pothole detector")
    logger.info("Sample source: %s", config.source.path or "(none)")
    logger.info("Web API: http://%s:%d", config.web.host, config.web.port)

    # Ensure data directories exist
    Path(config.recording.db_path).parent.mkdir(parents=True, exist_ok=True)

    # Create pipeline and web app
    pipeline = Pipeline(config, config_path=args.config)
    app = create_app(pipeline)

    # Start pipeline before web server
    pipeline.start()
    if args.autostart:
        pipeline.start_detection()

    try:
        # Run uvicorn (blocks until shutdown)
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
        pipeline.stop()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
