"""
Main entry point for Feed Mailer.

Wires the watermark store, fetcher, notifier and one poller per feed
together, and supervises the shared error sink.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from urllib.parse import urlparse

import coloredlogs
import yaml

from feed_mailer.config import load_config
from feed_mailer.dedup import DedupEngine
from feed_mailer.errors import ErrorSink, FeedMailerError
from feed_mailer.fetcher import FeedFetcher
from feed_mailer.mailer import EmailNotifier
from feed_mailer.poller import FeedPoller
from feed_mailer.watermarks import WatermarkStore

logger = logging.getLogger(__name__)


def redact_proxy_url(proxy_url: str) -> str:
    """
    Redact credentials from a proxy URL for safe logging.

    Parameters
    ----------
    proxy_url : str
        The proxy URL potentially containing credentials.

    Returns
    -------
    str
        The proxy URL with password redacted.
    """
    try:
        parsed = urlparse(proxy_url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:****@{netloc}"
            return f"{parsed.scheme}://{netloc}{parsed.path}"
        return proxy_url
    except ValueError:
        return "<proxy url>"


class FeedMailer:
    """
    Main Feed Mailer application.

    Owns every component and decides what a reported error means: with
    ``defaults.fail_fast`` the first error stops the application, otherwise
    errors are logged and every feed keeps polling.
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the application.

        Parameters
        ----------
        config_path : str | Path
            Path to the YAML/JSON configuration file.
        """
        self.config = load_config(config_path)
        self.error_sink = ErrorSink()
        self.store: WatermarkStore | None = None
        self.fetcher: FeedFetcher | None = None
        self.notifier: EmailNotifier | None = None
        self.engine: DedupEngine | None = None
        self.pollers: list[FeedPoller] = []
        self._running = False
        self._supervisor: asyncio.Task | None = None

    async def start(self) -> None:
        """
        Start polling and supervise errors until stopped.

        Raises
        ------
        SnapshotError
            If the history file exists but cannot be loaded.
        FeedMailerError
            The first reported error, when ``fail_fast`` is enabled.
        """
        logger.info("Starting Feed Mailer")
        defaults = self.config.defaults

        self.store = WatermarkStore(self.config.storage.history_path, self.error_sink)
        self.store.load()
        self.store.start()

        if defaults.proxy:
            logger.info("Using proxy: %s", redact_proxy_url(defaults.proxy))

        self.fetcher = FeedFetcher(
            timeout=defaults.request_timeout,
            max_retries=defaults.max_retries,
            user_agent=defaults.user_agent,
            proxy_url=defaults.proxy,
        )

        self.notifier = EmailNotifier(self.config.smtp)
        if not await self.notifier.test_connection():
            logger.warning("SMTP server is not reachable, notifications will fail until it is")

        self.engine = DedupEngine(self.store, self.notifier, self.error_sink)

        self._running = True

        logger.info("Fetching feeds")
        for feed in self.config.feeds:
            poller = FeedPoller(
                feed,
                self.fetcher,
                self.engine,
                self.error_sink,
                default_interval=defaults.check_interval,
            )
            poller.start()
            self.pollers.append(poller)

        logger.info("Feed Mailer started with %d feed(s)", len(self.pollers))

        self._supervisor = asyncio.create_task(self._supervise())
        try:
            await self._supervisor
        except asyncio.CancelledError:
            logger.info("Supervisor cancelled")

    async def _supervise(self) -> None:
        async for error in self.error_sink:
            if self.config.defaults.fail_fast:
                logger.critical("Stopping on first error (fail_fast enabled)")
                raise error
            logger.debug("Continuing after error: %s", error)

    async def stop(self) -> None:
        """Stop the application gracefully."""
        logger.info("Stopping Feed Mailer")
        self._running = False

        if self.pollers:
            await asyncio.gather(*(poller.stop() for poller in self.pollers))

        if self._supervisor and not self._supervisor.done():
            self._supervisor.cancel()
            await asyncio.gather(self._supervisor, return_exceptions=True)

        if self.store:
            await self.store.close()
        if self.fetcher:
            await self.fetcher.close()
        if self.notifier:
            await self.notifier.close()

        logger.info("Feed Mailer stopped")


def setup_logging(verbose: bool = False) -> None:
    """
    Configure application logging.

    Parameters
    ----------
    verbose : bool
        If True, set log level to DEBUG.
    """
    level = logging.DEBUG if verbose else logging.INFO

    coloredlogs.install(
        level=level,
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="feed-mailer",
        description="RSS/Atom feed watcher with e-mail notifications",
    )
    parser.add_argument(
        "config",
        help="Path to configuration file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    setup_logging(args.verbose)

    try:
        app = FeedMailer(args.config)
    except FileNotFoundError as e:
        logger.error("%s", e)
        sys.exit(1)
    except (yaml.YAMLError, ValueError) as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    exit_code = 0
    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except FeedMailerError as e:
        logger.error("Fatal: %s", e)
        exit_code = 1
    finally:
        loop.run_until_complete(app.stop())
        loop.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
