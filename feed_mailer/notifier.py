"""
Protocol definitions for notification backends.

Defines the interfaces the polling pipeline relies on: a notifier that
turns one item into one outbound message, and the transport it hands
rendered messages to.
"""

from email.message import EmailMessage
from typing import Protocol, runtime_checkable

from feed_mailer.entry import FeedItem


@runtime_checkable
class Notifier(Protocol):
    """
    Protocol defining the interface for notification backends.

    The @runtime_checkable decorator allows using isinstance() checks
    against this protocol for structural typing validation.
    """

    async def send_item(self, channel_title: str, item: FeedItem) -> None:
        """
        Send one feed item as a notification.

        Parameters
        ----------
        channel_title : str
            Title of the feed channel the item belongs to.
        item : FeedItem
            The item to send.

        Raises
        ------
        NotificationError
            If the notification could not be sent.
        """
        ...

    async def close(self) -> None:
        """Release any resources held by the notifier."""
        ...


@runtime_checkable
class MailTransport(Protocol):
    """Protocol for anything that can deliver a rendered e-mail."""

    async def send(self, message: EmailMessage, sender: str, recipients: list[str]) -> None:
        """
        Deliver a message.

        Parameters
        ----------
        message : EmailMessage
            The rendered message.
        sender : str
            Envelope sender.
        recipients : list[str]
            Envelope recipients.
        """
        ...
