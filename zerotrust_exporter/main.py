"""Main application entry point for the Zero Trust exporter."""

import argparse
import logging
import os
import sys
from typing import Any, Dict, Optional

import uvicorn

from .config.loader import ConfigLoader
from .config.models import ExporterConfig
from .errors import ConfigError
from .server import create_app
from .utils.logger import setup_logger


class ExporterService:
    """
    Loads configuration, builds the ASGI app and runs it under uvicorn.
    """

    def __init__(self, config_path: Optional[str] = None, cli_overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize exporter service.

        Args:
            config_path: Optional YAML configuration file
            cli_overrides: Values given as command line flags
        """
        self.config_path = config_path
        self.logger = setup_logger()

        self.config = self._load_config(cli_overrides or {})
        self.logger = setup_logger(level="DEBUG" if self.config.debug else self.config.log_level)
        self.app = create_app(self.config, self.logger)

    def _load_config(self, cli_overrides: Dict[str, Any]) -> ExporterConfig:
        """
        Load and validate configuration.

        Raises:
            SystemExit: If configuration is invalid
        """
        try:
            return ConfigLoader.build(self.config_path, cli_overrides)
        except ConfigError as e:
            self.logger.error(
                f"Failed to load configuration: {e}\n"
                "Both an API key and an account ID are required"
            )
            sys.exit(1)

    def log_startup(self) -> None:
        server = self.config.server
        collectors = self.config.collectors
        addr = f"{server.interface}:{server.port}"
        if self.config.debug:
            self.logger.info(f"Starting server on {addr} with debug mode enabled")
            self.logger.info(f"Devices metrics enabled: {collectors.devices}")
            self.logger.info(f"Users metrics enabled: {collectors.users}")
            self.logger.info(f"Tunnels metrics enabled: {collectors.tunnels}")
            self.logger.info(f"DEX metrics enabled: {collectors.dex}")
            self.logger.info(f"Account ID: {self.config.cloudflare.account_id}")
        else:
            self.logger.info(f"Starting server on {addr}")

    def run(self) -> None:
        self.log_startup()
        uvicorn.run(
            self.app,
            host=self.config.server.host,
            port=self.config.server.port,
            lifespan="on",
            log_level="debug" if self.config.debug else "warning",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Prometheus exporter for Cloudflare Zero Trust',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Export devices and users
  zerotrust-exporter --apikey $API_KEY --accountid $ACCOUNT_ID --devices --users

  # Everything, from a config file, on a custom port
  zerotrust-exporter --config config/config.yaml --port 9200

Every flag can also be given as an environment variable
(API_KEY, ACCOUNT_ID, DEBUG, DEVICES, USERS, TUNNELS, DEX, INTERFACE, PORT).
        """
    )

    parser.add_argument('--config', default=os.getenv('CONFIG_PATH'), help='Path to YAML configuration file')
    parser.add_argument('--apikey', help='Cloudflare API token (required)')
    parser.add_argument('--accountid', help='Cloudflare account ID (required)')
    parser.add_argument('--debug', action='store_true', default=None, help='Enable debug mode')
    parser.add_argument('--devices', action='store_true', default=None, help='Enable devices metrics')
    parser.add_argument('--users', action='store_true', default=None, help='Enable users metrics')
    parser.add_argument('--tunnels', action='store_true', default=None, help='Enable tunnels metrics')
    parser.add_argument('--dex', action='store_true', default=None, help='Enable DEX test metrics')
    parser.add_argument('--interface', help='Listening interface (default: any)')
    parser.add_argument('--port', type=int, help='Listening port (default: 9184)')
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: INFO or LOG_LEVEL env var)'
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """Map parsed flags onto the ExporterConfig shape; unset flags stay None."""
    return {
        'cloudflare': {'api_key': args.apikey, 'account_id': args.accountid},
        'collectors': {
            'devices': args.devices,
            'users': args.users,
            'tunnels': args.tunnels,
            'dex': args.dex,
        },
        'server': {'interface': args.interface, 'port': args.port},
        'debug': args.debug,
        'log_level': args.log_level,
    }


def main(argv=None):
    """
    CLI entry point.

    Parses command-line arguments and starts the exporter.
    """
    args = build_parser().parse_args(argv)

    try:
        service = ExporterService(config_path=args.config, cli_overrides=overrides_from_args(args))
        service.run()
    except Exception as e:
        logging.error(f"Application startup failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
