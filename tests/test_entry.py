"""
Unit tests for the feed item model.

Tests cover conversion from feedparser entries and publication date parsing.
"""

from datetime import datetime, timedelta, timezone

import feedparser
import pytest

from feed_mailer.entry import FeedItem, parse_published
from feed_mailer.errors import TimestampError


class TestFeedItemFromFeedparser:
    """Tests for FeedItem.from_feedparser."""

    def test_rss_entries(self, sample_rss_content: str) -> None:
        """Test conversion of RSS 2.0 items."""
        parsed = feedparser.parse(sample_rss_content)

        items = [FeedItem.from_feedparser(e) for e in parsed.entries]

        assert [i.title for i in items] == ["First Entry", "Second Entry", "Third Entry"]
        first = items[0]
        assert first.links == ["https://a.example/posts/1"]
        assert first.description == "Summary of the first entry"
        assert first.content is None
        assert first.published == "Mon, 01 Jan 2024 10:00:00 GMT"
        assert first.guid == "https://a.example/posts/1"

    def test_rss_content_encoded(self, sample_rss_content: str) -> None:
        """Test that content:encoded becomes the item body."""
        parsed = feedparser.parse(sample_rss_content)

        second = FeedItem.from_feedparser(parsed.entries[1])

        assert second.content == "<p>Full body of the second entry</p>"
        assert second.description == "Summary of the second entry"

    def test_atom_entries(self, sample_atom_content: str) -> None:
        """Test conversion of Atom entries, dated by <updated>."""
        parsed = feedparser.parse(sample_atom_content)

        items = [FeedItem.from_feedparser(e) for e in parsed.entries]

        assert [i.title for i in items] == ["Atom Entry One", "Atom Entry Two"]
        assert items[0].links == ["https://b.example/entries/1"]
        assert items[0].published == "2024-02-01T12:00:00Z"
        assert items[0].guid == "urn:uuid:1225c695-cfb8-4ebb-aaaa-80da344efa6a"

    def test_plain_dict_entry(self) -> None:
        """Test conversion of a minimal dict-like entry."""
        entry = feedparser.FeedParserDict(
            {
                "title": "Dict Entry",
                "link": "https://example.com/entry",
                "summary": "Summary",
                "content": [{"value": "Summary"}],
            }
        )

        item = FeedItem.from_feedparser(entry)

        assert item.links == ["https://example.com/entry"]
        assert item.guid == "https://example.com/entry"
        # Content identical to the summary is not repeated as a body
        assert item.content is None
        assert item.published == ""

    def test_missing_fields(self) -> None:
        """Test conversion of an entry with nothing but a title."""
        item = FeedItem.from_feedparser(feedparser.FeedParserDict({"title": "Only"}))

        assert item.links == []
        assert item.description == ""
        assert item.content is None
        assert item.guid == ""
        assert not hasattr(item, "raw")

    def test_key_prefers_guid(self) -> None:
        """Test the identity used across fetches."""
        assert FeedItem(guid="g", links=["l"], title="t").key == "g"
        assert FeedItem(links=["l"], title="t").key == "l"
        assert FeedItem(title="t").key == "t"


class TestParsePublished:
    """Tests for parse_published."""

    def test_rfc822(self) -> None:
        """Test RSS-style dates."""
        item = FeedItem(published="Wed, 03 Jan 2024 10:00:00 GMT")

        assert parse_published(item) == datetime(2024, 1, 3, 10, tzinfo=timezone.utc)

    def test_rfc822_numeric_offset(self) -> None:
        """Test RSS dates with a numeric offset are converted to UTC."""
        item = FeedItem(published="Wed, 03 Jan 2024 10:00:00 +0200")

        result = parse_published(item)

        assert result == datetime(2024, 1, 3, 8, tzinfo=timezone.utc)
        assert result.utcoffset() == timedelta(0)

    @pytest.mark.parametrize(
        ("value", "hour"),
        [
            ("Mon, 01 Jan 2024 12:00:00 EST", 17),
            ("Mon, 01 Jul 2024 12:00:00 EDT", 16),
            ("Mon, 01 Jan 2024 12:00:00 PST", 20),
            ("Mon, 01 Jan 2024 12:00:00 UT", 12),
        ],
    )
    def test_rfc822_zone_names(self, value: str, hour: int) -> None:
        """Test that North American zone names are honoured."""
        result = parse_published(FeedItem(published=value))

        assert result.hour == hour
        assert result.utcoffset() == timedelta(0)

    def test_dst_switch_keeps_order(self) -> None:
        """Test that a later EST item compares after an earlier EDT item."""
        before = parse_published(FeedItem(published="Sun, 03 Nov 2024 01:30:00 EDT"))
        after = parse_published(FeedItem(published="Sun, 03 Nov 2024 01:10:00 EST"))

        assert after > before

    def test_rfc3339(self) -> None:
        """Test Atom-style dates."""
        item = FeedItem(published="2024-01-03T10:00:00.5Z")

        assert parse_published(item) == datetime(
            2024, 1, 3, 10, 0, 0, 500000, tzinfo=timezone.utc
        )

    def test_naive_is_utc(self) -> None:
        """Test that dates without timezone are taken as UTC."""
        item = FeedItem(published="2024-01-03 10:00")

        assert parse_published(item).tzinfo is not None
        assert parse_published(item) == datetime(2024, 1, 3, 10, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["", "   ", "not a date", "2024-13-45"])
    def test_invalid_raises(self, value: str) -> None:
        """Test that missing or malformed dates raise TimestampError."""
        item = FeedItem(title="Item", published=value)

        with pytest.raises(TimestampError):
            parse_published(item, "https://a.example/feed")

    def test_error_carries_feed_url(self) -> None:
        """Test that the raised error names the feed."""
        with pytest.raises(TimestampError) as exc_info:
            parse_published(FeedItem(title="x", published="garbage"), "https://a.example/feed")

        assert exc_info.value.feed_url == "https://a.example/feed"
        assert "garbage" in str(exc_info.value)
