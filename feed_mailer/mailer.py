"""
E-mail notification client.

Renders feed items as HTML e-mails and delivers them over SMTP.
"""

import asyncio
import html
import logging
import smtplib
from email.message import EmailMessage

from feed_mailer.config import SmtpConfig
from feed_mailer.entry import FeedItem, parse_published
from feed_mailer.errors import NotificationError, TimestampError
from feed_mailer.notifier import MailTransport

logger = logging.getLogger(__name__)


def format_date(item: FeedItem) -> str | None:
    """
    Format an item's publication date for display, e.g. ``2 January 2006 15:04``.

    Returns None when the item has no usable date.
    """
    try:
        published = parse_published(item)
    except TimestampError:
        return None
    return f"{published.day} {published:%B %Y %H:%M}"


def render_body(item: FeedItem) -> str:
    """
    Render the HTML body of a notification.

    Parameters
    ----------
    item : FeedItem
        The item to render.

    Returns
    -------
    str
        HTML body. Date, links, description and content sections are only
        present when the item has them.
    """
    parts = [f"<b>Title:</b> {html.escape(item.title)}<br>"]

    date = format_date(item)
    if date:
        parts.append(f"<b>Date:</b> {date}<br>")

    if item.links:
        parts.append("<b>Links:</b><br>")
        for link in item.links:
            parts.append(f'  - <a href="{html.escape(link)}">{html.escape(link)}</a><br>')

    if item.description:
        parts.append(f"<b>Description:</b><br>{item.description}<br>")

    if item.content:
        parts.append(f"<b>Content:</b><br>{item.content}")

    return "\n".join(parts) + "\n"


def render_message(profile: SmtpConfig, channel_title: str, item: FeedItem) -> EmailMessage:
    """
    Render one item as an e-mail message.

    Parameters
    ----------
    profile : SmtpConfig
        Sender, recipients and subject prefix.
    channel_title : str
        Title of the feed channel.
    item : FeedItem
        The item to render.

    Returns
    -------
    EmailMessage
        Message ready to hand to a transport.
    """
    subject = f"{profile.subject_prefix} [{channel_title}] {item.title}".strip()
    # Header values must not contain line breaks
    subject = " ".join(subject.split())

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = profile.sender
    message["To"] = ", ".join(profile.recipients)
    message.set_content(render_body(item), subtype="html", charset="utf-8")
    return message


class SmtpTransport:
    """
    SMTP mail transport.

    smtplib is blocking, so every delivery runs in a worker thread.
    """

    def __init__(self, config: SmtpConfig):
        """
        Initialize the transport.

        Parameters
        ----------
        config : SmtpConfig
            SMTP server, credentials and timeout.
        """
        self.config = config

    async def send(self, message: EmailMessage, sender: str, recipients: list[str]) -> None:
        """
        Deliver a message.

        Raises
        ------
        smtplib.SMTPException, OSError
            If the server cannot be reached or rejects the message.
        """
        await asyncio.to_thread(self._send_sync, message, sender, recipients)

    def _send_sync(self, message: EmailMessage, sender: str, recipients: list[str]) -> None:
        with smtplib.SMTP(
            self.config.server_host,
            self.config.server_port,
            timeout=self.config.timeout,
        ) as smtp:
            smtp.ehlo()
            if self.config.starttls and smtp.has_extn("starttls"):
                smtp.starttls()
                smtp.ehlo()
            if self.config.username:
                smtp.login(self.config.username, self.config.password or "")
            smtp.send_message(message, from_addr=sender, to_addrs=recipients)

    async def test_connection(self) -> bool:
        """
        Check that the SMTP server answers.

        Returns
        -------
        bool
            True if the server accepted a NOOP.
        """
        try:
            await asyncio.to_thread(self._noop_sync)
            logger.info("Connected to SMTP server %s", self.config.address)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to connect to SMTP server %s: %s", self.config.address, e)
            return False

    def _noop_sync(self) -> None:
        with smtplib.SMTP(
            self.config.server_host,
            self.config.server_port,
            timeout=self.config.timeout,
        ) as smtp:
            smtp.noop()


class EmailNotifier:
    """
    E-mail notification client.

    Sends exactly one message per item through the configured transport.
    Failures are raised, never retried.
    """

    def __init__(self, config: SmtpConfig, transport: MailTransport | None = None):
        """
        Initialize the notifier.

        Parameters
        ----------
        config : SmtpConfig
            Message profile and SMTP settings.
        transport : MailTransport | None
            Transport to deliver through. Defaults to SMTP with ``config``.
        """
        self.config = config
        self.transport = transport or SmtpTransport(config)

    async def send_item(self, channel_title: str, item: FeedItem) -> None:
        """
        Send one item as an e-mail.

        Parameters
        ----------
        channel_title : str
            Title of the feed channel.
        item : FeedItem
            The item to send.

        Raises
        ------
        NotificationError
            If the message could not be delivered.
        """
        message = render_message(self.config, channel_title, item)

        logger.info("Sending e-mail: [%s] %s", channel_title, item.title[:50])
        try:
            await self.transport.send(message, self.config.sender, self.config.recipients)
        except NotificationError:
            raise
        except Exception as e:
            raise NotificationError(
                f"Failed to send notification for '{item.title[:50]}': {e}"
            ) from e

    async def test_connection(self) -> bool:
        """Test the transport connection when the transport supports it."""
        test = getattr(self.transport, "test_connection", None)
        if test is None:
            return True
        return await test()

    async def close(self) -> None:
        """Nothing to release: SMTP connections are opened per message."""
        logger.debug("E-mail notifier closed")
