"""Command line entry point of the broker."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from typing import Optional, Sequence

from .server import MesgServer, MesgServerOptions

LOG_ENV = "MESG_LOG"

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": logging.CRITICAL + 1,
}

_SILENCED = ("grpc", "grpc._cython", "grpc.aio")


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}") from exc
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


def parse_args(argv: Optional[Sequence[str]] = None) -> MesgServerOptions:
    """Parse command line arguments into server options."""
    parser = argparse.ArgumentParser(prog="mesg", description="Message broker server.")
    parser.add_argument("-d", "--db-path", default="", help="storage path")
    parser.add_argument("-p", "--port", type=_port, default=35000, help="gRPC port")
    parser.add_argument(
        "-m", "--metric-port", type=_port, default=35001, help="proto and metrics HTTP port"
    )
    args = parser.parse_args(argv)
    return MesgServerOptions(db_path=args.db_path, port=args.port, metric_port=args.metric_port)


def init_logging() -> int:
    """Configure logging from the environment; returns the chosen level."""
    name = os.environ.get(LOG_ENV, "info").strip().lower()
    level = _LEVELS.get(name, logging.INFO)
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(level)
    for logger_name in _SILENCED:
        logging.getLogger(logger_name).setLevel(logging.CRITICAL + 1)
    return level


def main(argv: Optional[Sequence[str]] = None) -> int:
    init_logging()
    options = parse_args(argv)
    try:
        asyncio.run(MesgServer().run(options))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())