"""Command-line interface for vibes."""

from __future__ import annotations

import argparse
from dataclasses import replace
import logging
import sys
import threading
from types import TracebackType
from typing import Callable, Iterable, Optional, Tuple
import webbrowser

from vibes import __version__
from vibes.config import AppConfig, load_client_credentials, load_config
from vibes.errors import ConfigError
from vibes.logging_setup import init_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="vibes", description="Control Spotify from your terminal"
    )
    parser.add_argument(
        "--reauth",
        action="store_true",
        help="Forget the cached login and sign in again",
    )
    parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Print the login URL instead of opening a browser",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        metavar="SECONDS",
        help="How often to ask Spotify for playback state",
    )
    parser.add_argument("--version", action="version", version=f"vibes {__version__}")
    return parser


def apply_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.no_browser:
        cfg = replace(cfg, open_browser=False)
    if args.poll_interval is not None:
        cfg = replace(cfg, poll_interval=max(0.5, args.poll_interval))
    return cfg


def make_url_opener(cfg: AppConfig) -> Callable[[str], None]:
    def open_url(url: str) -> None:
        logger.info("Login URL: %s", url)
        if cfg.open_browser:
            try:
                if webbrowser.open(url):
                    return
            except webbrowser.Error:
                logger.warning("Could not open a browser", exc_info=True)
        print(f"Open this URL to log in to Spotify:\n{url}", file=sys.stderr)

    return open_url


def _run_tui(cfg: AppConfig, args: argparse.Namespace) -> int:
    try:
        credentials = load_client_credentials(cfg)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    try:
        from vibes.tui import run_tui
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    return run_tui(
        cfg, credentials, open_url=make_url_opener(cfg), reauth=args.reauth
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    """Entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    init_logging()
    logger.info("App start")

    def excepthook(exc_type, exc, tb) -> None:
        logger.exception("Uncaught exception", exc_info=(exc_type, exc, tb))

    sys.excepthook = excepthook

    if hasattr(threading, "excepthook"):

        def thread_hook(args: threading.ExceptHookArgs) -> None:
            exc_value = args.exc_value or RuntimeError("unknown")
            exc_info: Tuple[
                type[BaseException], BaseException, Optional[TracebackType]
            ] = (
                args.exc_type,
                exc_value,
                args.exc_traceback,
            )
            thread_name = args.thread.name if args.thread else "thread"
            logger.exception("Thread exception in %s", thread_name, exc_info=exc_info)

        threading.excepthook = thread_hook

    cfg = apply_overrides(load_config(), args)
    exit_code = _run_tui(cfg, args)
    logger.info("App exit code=%s", exit_code)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
