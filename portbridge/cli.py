"""Command-line entry point: runs a client or a server."""

from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from portbridge.client import Client
from portbridge.config import DEFAULT_SSH_ADDRESS, Config
from portbridge.server import Server

logger = logging.getLogger(__name__)

DEFAULT_KEY = "awefeawgaw"


def parse_args(argv: Optional[Sequence[str]] = None) -> Config:
    """Parse command-line flags into a ``Config``."""
    parser = argparse.ArgumentParser(prog="portbridge", add_help=False)
    parser.add_argument("-d", dest="port", type=int, default=0, help="port")
    parser.add_argument("-h", dest="server_address", default="", help="server ip:port")
    parser.add_argument("-k", dest="key", default=DEFAULT_KEY, help="encryption key")
    parser.add_argument(
        "-sh", dest="ssh_address", default=DEFAULT_SSH_ADDRESS, help="ssh address"
    )
    parser.add_argument("-help", "--help", action="help", help="show this help")
    args = parser.parse_args(argv)
    return Config(
        port=args.port,
        server_address=args.server_address,
        key=args.key,
        ssh_address=args.ssh_address,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run as client if a server address is given, otherwise as server."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    config = parse_args(argv)
    logger.info("config: %s", config)
    try:
        (Client if config.role() == "client" else Server)(config).start()
    except (OSError, ValueError) as exc:
        logger.error("%s failed: %s", config.role(), exc)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0