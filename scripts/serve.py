#!/usr/bin/env python3
"""CLI entry point for the population map server."""

import argparse
import logging
import sys

from popmap.app import app, configure
from popmap.config import load_config_from_env


def main():
    parser = argparse.ArgumentParser(
        description="Serve the interactive population map"
    )
    parser.add_argument(
        "--host",
        help="Interface to bind. Default: POPMAP_HOST or 127.0.0.1",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to listen on. Default: POPMAP_PORT or 5000",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Run Flask in debug mode",
    )
    parser.add_argument(
        "--dark",
        action="store_true",
        help="Start new sessions in dark mode",
    )
    parser.add_argument(
        "--feature-path",
        help="Local GeoJSON/Shapefile/GeoPackage to use instead of the feature service",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Load configuration from environment
    config = load_config_from_env(feature_path=args.feature_path)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.debug:
        config.server.debug = True
    if args.dark:
        config.theme.start_dark = True

    source = config.feature_service.path or config.feature_service.url
    print("Starting population map...")
    print(f"  Address: http://{config.server.host}:{config.server.port}/")
    print(f"  Features: {source}")
    print(f"  WMS: {config.image_service.url}")
    print()

    configure(config)

    try:
        app.run(debug=config.server.debug, host=config.server.host, port=config.server.port)
    except OSError as e:
        print(f"Server failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
