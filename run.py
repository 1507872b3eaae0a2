"""
Application Runner

This script loads configuration, configures logging and runs the API with
the lifecycle core handling termination.
"""

import sys
import asyncio
import argparse
import logging

from plaid_api.core.config import load_config
from plaid_api.core.errors import ConfigurationError
from plaid_api.core.logger import setup_logging
from plaid_api.server import serve


logger = logging.getLogger("runner")


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Plaid API")
    parser.add_argument(
        '-c', '--config',
        type=str,
        default=None,
        help='Path to config JSON file (default: config.json or CONFIG_PATH env var)'
    )
    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_args()

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        setup_logging()
        logger.critical(f"Failed to load configuration: {e}")
        sys.exit(1)

    setup_logging(config.runtime.environment)

    try:
        asyncio.run(serve(config))
    except Exception as e:
        logger.critical(f"Failed to start application: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
