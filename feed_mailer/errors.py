"""
Error types and the shared error sink.

Every recoverable failure in the pipeline (fetch, timestamp parsing,
notification, persistence) is reported to a single ErrorSink, which the
application consumes to decide whether to keep running.
"""

import asyncio
import logging
from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class FeedMailerError(Exception):
    """
    Base class for Feed Mailer errors.

    Attributes
    ----------
    feed_url : str | None
        URL of the feed the error relates to, if any.
    """

    def __init__(self, message: str, feed_url: str | None = None):
        super().__init__(message)
        self.feed_url = feed_url


class SnapshotError(FeedMailerError):
    """Raised when an existing watermark snapshot cannot be read or parsed."""

    pass


class FetchError(FeedMailerError):
    """Raised when a feed could not be fetched."""

    pass


class TimestampError(FeedMailerError):
    """Raised when an item's publication date cannot be parsed."""

    pass


class NotificationError(FeedMailerError):
    """Raised when a notification could not be handed to the mail transport."""

    pass


class PersistenceError(FeedMailerError):
    """Raised when the watermark snapshot could not be written."""

    pass


class ErrorSink:
    """
    Aggregation point for errors raised by pollers and the watermark store.

    Reporting never blocks, so any task may report at any time. Errors are
    consumed in report order with :meth:`get` or ``async for``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[FeedMailerError] = asyncio.Queue()
        self.reported = 0

    def report(self, error: FeedMailerError) -> None:
        """
        Report an error.

        Parameters
        ----------
        error : FeedMailerError
            The error to surface to the operator.
        """
        self.reported += 1
        if error.feed_url:
            logger.error("[%s] %s", error.feed_url, error)
        else:
            logger.error("%s", error)
        self._queue.put_nowait(error)

    async def get(self) -> FeedMailerError:
        """Wait for and return the next reported error."""
        return await self._queue.get()

    def pending(self) -> int:
        """Return the number of reported errors not yet consumed."""
        return self._queue.qsize()

    def __aiter__(self) -> AsyncIterator[FeedMailerError]:
        return self._iter_errors()

    async def _iter_errors(self) -> AsyncIterator[FeedMailerError]:
        while True:
            yield await self._queue.get()
