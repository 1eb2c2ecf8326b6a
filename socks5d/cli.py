"""Command-line entry point for the SOCKS5 server."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional, Sequence

from .config import load_config
from .server import Server

log = logging.getLogger(__name__)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Load the configuration and run the server; return an exit status."""
    parser = argparse.ArgumentParser(prog="socks5d", description="SOCKS5 proxy server")
    parser.add_argument("-c", dest="config", default="config.json", help="configuration file path")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    log.info("loading configuration file: %s", args.config)
    try:
        config = load_config(args.config)
    except FileNotFoundError:
        log.error("configuration file %s does not exist", args.config)
        return 1
    except (OSError, ValueError) as exc:
        log.error("failed to load configuration: %s", exc)
        return 1
    log.info("loaded configuration: %r", config)

    try:
        asyncio.run(Server(config).serve_forever())
    except KeyboardInterrupt:
        return 0
    except (OSError, RuntimeError, ValueError) as exc:
        log.error("server failed to start: %s", exc)
        return 1
    return 0