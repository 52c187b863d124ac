from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Dict

from wsreplay.core.config import ServerConfig, build_config, load_yaml
from wsreplay.core.errors import ConfigError, ReplayError
from wsreplay.core.reader import probe_source
from wsreplay.server.runtime import ServerRuntime

log = logging.getLogger("wsreplay.cmd.server")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wsreplay",
        description="Play back a record file as websocket messages when a client connects.",
    )
    parser.add_argument("file", nargs="?", help="capture file to replay")

    upfront = parser.add_mutually_exclusive_group()
    upfront.add_argument("-c", dest="count", metavar="COUNT", type=int, help="count of records to play upfront")
    upfront.add_argument(
        "-p",
        dest="percentage",
        metavar="PERC",
        type=float,
        help="fraction of the file's bytes to play upfront [default: 0.8]",
    )

    delim = parser.add_mutually_exclusive_group()
    delim.add_argument(
        "-n", dest="delimiter", action="store_const", const="newline", help="records are newline separated [default]"
    )
    delim.add_argument("-0", dest="delimiter", action="store_const", const="null", help="records are null byte separated")

    parser.add_argument("-t", dest="interval", metavar="TIME", type=float, help="seconds to wait between messages [default: 1]")
    parser.add_argument("--listen", help="host:port to listen on [default: 127.0.0.1:3333]")
    parser.add_argument("--config", type=Path, help="YAML file with default settings")
    parser.add_argument("-v", "--verbose", action="store_true", help="log every record sent")
    return parser


def merge_settings(args: argparse.Namespace) -> Dict[str, Any]:
    """Overlay command-line flags on the YAML settings, if any."""

    settings: Dict[str, Any] = load_yaml(args.config) if args.config else {}
    if args.count is not None:
        settings["count"] = args.count
        settings.pop("percentage", None)
    elif args.percentage is not None:
        settings["percentage"] = args.percentage
        settings.pop("count", None)
    for key in ("file", "delimiter", "interval", "listen"):
        value = getattr(args, key)
        if value is not None:
            settings[key] = value
    return settings


def load_config(args: argparse.Namespace) -> ServerConfig:
    """Build the server config and make sure the capture can be opened."""

    config = build_config(merge_settings(args))
    try:
        probe_source(config.session.source_path)
    except ReplayError as exc:
        raise ConfigError(str(exc)) from exc
    return config


async def _run(config: ServerConfig) -> None:
    runtime = ServerRuntime(config)
    await runtime.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
    except NotImplementedError:
        pass

    log.info("Server running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        await runtime.stop()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args)
    except ConfigError as exc:
        raise SystemExit(f"wsreplay: {exc}") from exc
    log.info("Starting with %s", config)

    try:
        asyncio.run(_run(config))
    except OSError as exc:
        raise SystemExit(f"wsreplay: cannot listen on {config.host}:{config.port}: {exc}") from exc


if __name__ == "__main__":
    main()
