"""
New-item detection.

Decides which items of a fetched batch have not been notified yet,
notifies them in batch order and advances the feed's watermark.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from feed_mailer.entry import FeedItem, parse_published
from feed_mailer.errors import ErrorSink, FeedMailerError, NotificationError, TimestampError
from feed_mailer.notifier import Notifier
from feed_mailer.watermarks import WatermarkStore

logger = logging.getLogger(__name__)


@dataclass
class NewItem:
    """An item judged new, with its parsed publication date if it has one."""

    item: FeedItem
    published: datetime | None


@dataclass
class BatchOutcome:
    """
    Result of processing one fetched batch.

    Attributes
    ----------
    new : list[NewItem]
        Items judged new, in batch order.
    delivered : list[NewItem]
        New items whose notification succeeded.
    failed : list[NewItem]
        New items whose notification failed.
    watermark : datetime | None
        Watermark requested from the store, or None if no update was issued.
    """

    new: list[NewItem] = field(default_factory=list)
    delivered: list[NewItem] = field(default_factory=list)
    failed: list[NewItem] = field(default_factory=list)
    watermark: datetime | None = None


def select_new_items(
    feed_url: str,
    watermark: datetime | None,
    items: list[FeedItem],
    on_error: Callable[[FeedMailerError], None] | None = None,
) -> list[NewItem]:
    """
    Pick the items published after a watermark.

    An item is new if the feed has no watermark yet, or if its publication
    date is strictly after the watermark. Items whose date cannot be parsed
    are reported through ``on_error`` and only count as new while the feed
    has no watermark.

    Parameters
    ----------
    feed_url : str
        Feed identity, attached to reported errors.
    watermark : datetime | None
        Last notified timestamp of the feed.
    items : list[FeedItem]
        The fetched batch.
    on_error : Callable[[FeedMailerError], None] | None
        Receives timestamp parsing errors.

    Returns
    -------
    list[NewItem]
        New items in batch order.
    """
    new_items = []
    for item in items:
        try:
            published = parse_published(item, feed_url)
        except TimestampError as e:
            if on_error is not None:
                on_error(e)
            published = None

        if watermark is None or (published is not None and published > watermark):
            new_items.append(NewItem(item, published))

    return new_items


def next_watermark(delivered: list[NewItem], failed: list[NewItem]) -> datetime | None:
    """
    Compute the watermark to request after notifying a batch.

    The candidate is the latest date among delivered items, ignoring any
    that are not strictly before the earliest failed item so the failed
    item stays new for the next poll.

    Returns
    -------
    datetime | None
        The candidate, or None if no dated item qualifies.
    """
    failed_dates = [n.published for n in failed if n.published is not None]
    ceiling = min(failed_dates) if failed_dates else None

    candidate = None
    for new_item in delivered:
        published = new_item.published
        if published is None:
            continue
        if ceiling is not None and published >= ceiling:
            continue
        if candidate is None or published > candidate:
            candidate = published
    return candidate


class DedupEngine:
    """
    Per-batch dedup, notify and watermark pipeline.

    The watermark is read once per batch without holding anything, and at
    most one update is requested per batch.
    """

    def __init__(
        self,
        store: WatermarkStore,
        notifier: Notifier,
        error_sink: ErrorSink,
    ):
        self.store = store
        self.notifier = notifier
        self.error_sink = error_sink

    async def process(
        self, feed_url: str, channel_title: str, items: list[FeedItem]
    ) -> BatchOutcome:
        """
        Notify the new items of a batch and advance the watermark.

        Parameters
        ----------
        feed_url : str
            Feed identity.
        channel_title : str
            Channel title used in notifications.
        items : list[FeedItem]
            Items newly reported by the fetcher, in feed order.

        Returns
        -------
        BatchOutcome
            What was found, delivered and requested.
        """
        watermark = self.store.get(feed_url)
        outcome = BatchOutcome()
        outcome.new = select_new_items(feed_url, watermark, items, self.error_sink.report)

        logger.info(
            "%d new item(s) in %s (%d fetched)", len(outcome.new), feed_url, len(items)
        )

        for new_item in outcome.new:
            try:
                await self.notifier.send_item(channel_title, new_item.item)
            except NotificationError as e:
                e.feed_url = feed_url
                self.error_sink.report(e)
                outcome.failed.append(new_item)
            else:
                outcome.delivered.append(new_item)

        candidate = next_watermark(outcome.delivered, outcome.failed)
        if candidate is not None:
            outcome.watermark = candidate
            await self.store.update(feed_url, candidate)

        return outcome
