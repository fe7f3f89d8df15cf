"""
Per-feed polling task.

Each configured feed gets one FeedPoller that fetches the feed, passes new
items through the dedup engine and waits for the next check, until it is
stopped.
"""

import asyncio
import logging

from feed_mailer.config import FeedConfig
from feed_mailer.dedup import DedupEngine
from feed_mailer.errors import ErrorSink, FeedMailerError, FetchError
from feed_mailer.fetcher import FeedFetcher

logger = logging.getLogger(__name__)


class FeedPoller:
    """
    Polling loop for a single feed.

    Fetch errors are reported and never end the loop. The interval before
    the next check is the feed's configured ``check_interval`` if set,
    otherwise the interval the feed itself recommends, otherwise the
    default interval.
    """

    def __init__(
        self,
        feed: FeedConfig,
        fetcher: FeedFetcher,
        engine: DedupEngine,
        error_sink: ErrorSink,
        default_interval: int = 1800,
    ):
        """
        Initialize the poller.

        Parameters
        ----------
        feed : FeedConfig
            Feed to poll.
        fetcher : FeedFetcher
            Fetch collaborator shared by all pollers.
        engine : DedupEngine
            Dedup/notify pipeline shared by all pollers.
        error_sink : ErrorSink
            Where failures are reported.
        default_interval : int
            Interval in seconds when neither the configuration nor the feed
            provides one.
        """
        self.feed = feed
        self.fetcher = fetcher
        self.engine = engine
        self.error_sink = error_sink
        self.default_interval = default_interval
        self.polls = 0
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _next_interval(self, recommended: int | None = None) -> int:
        if self.feed.check_interval:
            return self.feed.check_interval
        return recommended or self.default_interval

    def start(self) -> asyncio.Task:
        """
        Start polling in a new task.

        Returns
        -------
        asyncio.Task
            The polling task.
        """
        if self.running:
            return self._task
        self._stopping.clear()
        self._task = asyncio.create_task(self.run(), name=f"poll:{self.feed.url}")
        logger.info("Started watching feed: %s", self.feed.display_name)
        return self._task

    async def stop(self) -> None:
        """Stop polling and wait for the current check to finish."""
        self._stopping.set()
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Stopped watching feed: %s", self.feed.display_name)

    async def run(self) -> None:
        """Poll until stopped."""
        while not self._stopping.is_set():
            try:
                delay = await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.error_sink.report(
                    FeedMailerError(f"Error checking feed: {e}", self.feed.url)
                )
                delay = self._next_interval()

            logger.debug(
                "Next check of '%s' in %d seconds", self.feed.display_name, delay
            )
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except TimeoutError:
                pass

    async def poll_once(self) -> int:
        """
        Check the feed once.

        Returns
        -------
        int
            Seconds to wait before the next check.
        """
        self.polls += 1
        logger.debug("Checking feed: %s", self.feed.display_name)

        try:
            result = await self.fetcher.fetch(self.feed)
        except FetchError as e:
            self.error_sink.report(e)
            return self._next_interval()

        if result.items:
            try:
                outcome = await self.engine.process(
                    self.feed.url, result.channel_title, result.items
                )
            except Exception:
                # Offer the whole batch again on the next fetch
                self.fetcher.forget(self.feed.url, result.items)
                raise
            if outcome.failed:
                # Let the next fetch report them again
                self.fetcher.forget(self.feed.url, [n.item for n in outcome.failed])

        return self._next_interval(result.interval)
