"""
Feed Mailer - Monitor RSS feeds and send e-mail notifications.

A Python application that polls RSS/Atom feeds, detects entries published
since the last check and mails each new entry, keeping a per-feed
watermark on disk so restarts do not re-notify.
"""

__version__ = "1.0.0"
