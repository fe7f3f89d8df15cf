"""
Feed item model.

Normalizes feedparser entries into FeedItem objects and parses their
publication dates into comparable timestamps.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as dateparser

from feed_mailer.errors import TimestampError

logger = logging.getLogger(__name__)

# RFC 822 zone names, as UTC offsets in seconds
RFC822_ZONES = {
    "UT": 0,
    "GMT": 0,
    "EST": -5 * 3600,
    "EDT": -4 * 3600,
    "CST": -6 * 3600,
    "CDT": -5 * 3600,
    "MST": -7 * 3600,
    "MDT": -6 * 3600,
    "PST": -8 * 3600,
    "PDT": -7 * 3600,
}


@dataclass
class FeedItem:
    """
    Normalized RSS/Atom item.

    Attributes
    ----------
    title : str
        Item title.
    links : list[str]
        URLs attached to the item, in feed order.
    description : str
        Item summary/description (HTML as published by the feed).
    content : str | None
        Full item body, if the feed provides one.
    published : str
        Publication date as found in the feed. May be empty or unparseable.
    guid : str
        Unique identifier for the item.
    """

    title: str = ""
    links: list[str] = field(default_factory=list)
    description: str = ""
    content: str | None = None
    published: str = ""
    guid: str = ""

    @property
    def key(self) -> str:
        """Identity used to recognise an item across fetches."""
        if self.guid:
            return self.guid
        if self.links:
            return self.links[0]
        return self.title

    @classmethod
    def from_feedparser(cls, entry: Any) -> "FeedItem":
        """
        Create a FeedItem from a feedparser entry.

        Parameters
        ----------
        entry : Any
            A feedparser entry object.

        Returns
        -------
        FeedItem
            Normalized item instance.
        """
        links = [
            link.get("href", "")
            for link in entry.get("links", [])
            if link.get("href")
        ]
        if not links and entry.get("link"):
            links = [entry.get("link")]

        description = entry.get("summary", "") or ""

        # feedparser mirrors the summary into content for some RSS feeds
        content = None
        if entry.get("content"):
            value = entry.get("content")[0].get("value", "")
            if value and value != description:
                content = value

        return cls(
            title=entry.get("title", ""),
            links=links,
            description=description,
            content=content,
            published=entry.get("published", "") or entry.get("updated", ""),
            guid=entry.get("id", "") or entry.get("link", ""),
        )


def parse_published(item: FeedItem, feed_url: str | None = None) -> datetime:
    """
    Parse an item's publication date.

    Accepts RFC 822 dates (RSS) and ISO-8601/RFC 3339 dates (Atom).
    Dates without a timezone are taken as UTC.

    Parameters
    ----------
    item : FeedItem
        The item whose date to parse.
    feed_url : str | None
        Feed the item came from, attached to any error raised.

    Returns
    -------
    datetime
        Timezone-aware publication timestamp.

    Raises
    ------
    TimestampError
        If the item has no date or the date cannot be parsed.
    """
    if not item.published or not item.published.strip():
        raise TimestampError(f"Item '{item.title[:50]}' has no publication date", feed_url)

    try:
        parsed = dateparser.parse(item.published, tzinfos=RFC822_ZONES)
    except (ValueError, OverflowError) as e:
        raise TimestampError(
            f"Cannot parse publication date {item.published!r} of item '{item.title[:50]}': {e}",
            feed_url,
        ) from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
