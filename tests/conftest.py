"""
Shared fixtures for Feed Mailer tests.

Provides common test fixtures for use across all test modules.
"""

from collections.abc import AsyncGenerator
from email.message import EmailMessage
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from feed_mailer.config import FeedConfig, SmtpConfig
from feed_mailer.entry import FeedItem
from feed_mailer.errors import ErrorSink, NotificationError
from feed_mailer.watermarks import WatermarkStore


# Path to test fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

FEED_URL = "https://a.example/feed"


class RecordingNotifier:
    """Notifier double that records sent items and can fail on demand."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, FeedItem]] = []
        self.fail_titles: set[str] = set()

    async def send_item(self, channel_title: str, item: FeedItem) -> None:
        if item.title in self.fail_titles:
            raise NotificationError(f"Failed to send notification for '{item.title}'")
        self.sent.append((channel_title, item))

    async def close(self) -> None:
        pass

    @property
    def titles(self) -> list[str]:
        return [item.title for _, item in self.sent]


class RecordingTransport:
    """Mail transport double that records delivered messages."""

    def __init__(self, error: Exception | None = None) -> None:
        self.messages: list[tuple[EmailMessage, str, list[str]]] = []
        self.error = error

    async def send(self, message: EmailMessage, sender: str, recipients: list[str]) -> None:
        if self.error is not None:
            raise self.error
        self.messages.append((message, sender, recipients))


def make_item(title: str, published: str = "", **kwargs: Any) -> FeedItem:
    """Build a FeedItem with a guid derived from its title."""
    kwargs.setdefault("guid", f"urn:{title}")
    return FeedItem(title=title, published=published, **kwargs)


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def sample_rss_content(fixtures_dir: Path) -> str:
    """Return contents of sample RSS feed."""
    return (fixtures_dir / "sample_rss.xml").read_text()


@pytest.fixture
def sample_atom_content(fixtures_dir: Path) -> str:
    """Return contents of sample Atom feed."""
    return (fixtures_dir / "sample_atom.xml").read_text()


@pytest.fixture
def sample_config_path(fixtures_dir: Path) -> Path:
    """Return path to sample config file."""
    return fixtures_dir / "sample_config.yaml"


@pytest.fixture
def sample_item() -> FeedItem:
    """
    Create a fully populated feed item.

    Returns
    -------
    FeedItem
        An item with links, description, content and a date.
    """
    return FeedItem(
        title="Test Item Title",
        links=["https://a.example/posts/1", "https://a.example/posts/1#comments"],
        description="<p>A short description</p>",
        content="<p>The full body</p>",
        published="Mon, 01 Jan 2024 12:30:00 GMT",
        guid="https://a.example/posts/1",
    )


@pytest.fixture
def smtp_config() -> SmtpConfig:
    """Create a valid SMTP profile."""
    return SmtpConfig(
        address="smtp.example.com:587",
        username="mailer@example.com",
        password="secret",
        sender="mailer@example.com",
        recipients=["me@example.com", "you@example.com"],
        subject_prefix="[feeds]",
    )


@pytest.fixture
def smtp_config_dict() -> dict[str, Any]:
    """Create a valid SMTP configuration dictionary."""
    return {
        "address": "smtp.example.com:587",
        "sender": "mailer@example.com",
        "recipients": ["me@example.com"],
    }


@pytest.fixture
def minimal_config_dict(smtp_config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Create a minimal valid configuration dictionary.

    Returns
    -------
    dict
        Configuration dictionary that can be used to create AppConfig.
    """
    return {
        "smtp": dict(smtp_config_dict),
        "feeds": [FEED_URL],
    }


@pytest.fixture
def feed_config() -> FeedConfig:
    """Create a minimal feed configuration."""
    return FeedConfig(url=FEED_URL)


@pytest.fixture
def error_sink() -> ErrorSink:
    """Create an empty error sink."""
    return ErrorSink()


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Create a recording notifier."""
    return RecordingNotifier()


@pytest.fixture
def history_path(tmp_path: Path) -> Path:
    """Return a path for the watermark snapshot inside a temp directory."""
    return tmp_path / "data" / "history.json"


@pytest_asyncio.fixture
async def store(
    history_path: Path, error_sink: ErrorSink
) -> AsyncGenerator[WatermarkStore, None]:
    """
    Create a started watermark store backed by a temp file.

    Yields
    ------
    WatermarkStore
        A loaded, running store.
    """
    watermark_store = WatermarkStore(history_path, error_sink)
    watermark_store.load()
    watermark_store.start()
    yield watermark_store
    await watermark_store.close()
