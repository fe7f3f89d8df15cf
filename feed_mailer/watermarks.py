"""
Per-feed watermark storage.

Keeps the "last notified" timestamp of every feed in memory and persists
the full mapping to a JSON snapshot so restarts do not re-notify items.
All updates go through a single owner task that applies them one at a
time and atomically replaces the snapshot file after each change.
"""

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from dateutil import parser as dateparser

from feed_mailer.errors import ErrorSink, PersistenceError, SnapshotError

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class _UpdateRequest:
    feed_url: str
    timestamp: datetime
    future: asyncio.Future


class WatermarkStore:
    """
    Watermark mapping with a single-writer JSON snapshot.

    Reads are served from the current mapping, which the owner task
    replaces rather than mutates, so a reader never sees a partial update.
    Updates are queued and applied in arrival order by the owner task;
    a timestamp only ever replaces a strictly older one.
    """

    def __init__(self, path: str | Path, error_sink: ErrorSink | None = None):
        """
        Initialize the store.

        Parameters
        ----------
        path : str | Path
            Path to the JSON snapshot file.
        error_sink : ErrorSink | None
            Where persistence failures are reported. Without a sink they
            are only logged.
        """
        self.path = Path(path)
        self.error_sink = error_sink
        self.writes = 0
        self._watermarks: dict[str, datetime] = {}
        self._queue: asyncio.Queue[_UpdateRequest | None] = asyncio.Queue()
        self._owner: asyncio.Task | None = None

    def load(self) -> None:
        """
        Load the snapshot file.

        A missing file is not an error: the store starts empty and the file
        is created on the first update.

        Raises
        ------
        SnapshotError
            If the file exists but cannot be read or parsed.
        """
        logger.info("Reading history from %s", self.path)
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("History file (%s) not found, it will be created", self.path)
            self._watermarks = {}
            return
        except (OSError, UnicodeDecodeError) as e:
            raise SnapshotError(f"Cannot read history file {self.path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SnapshotError(f"History file {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise SnapshotError(f"History file {self.path} must contain a JSON object")

        watermarks: dict[str, datetime] = {}
        for feed_url, value in data.items():
            if not isinstance(value, str):
                raise SnapshotError(
                    f"Invalid timestamp for {feed_url} in {self.path}: {value!r}"
                )
            try:
                watermarks[feed_url] = _as_utc(dateparser.isoparse(value))
            except (ValueError, OverflowError) as e:
                raise SnapshotError(
                    f"Invalid timestamp for {feed_url} in {self.path}: {value!r}"
                ) from e

        self._watermarks = watermarks
        logger.info("Loaded %d watermark(s) from %s", len(watermarks), self.path)

    def get(self, feed_url: str) -> datetime | None:
        """
        Return the last notified timestamp of a feed.

        Parameters
        ----------
        feed_url : str
            Feed identity.

        Returns
        -------
        datetime | None
            The watermark, or None if the feed was never notified.
        """
        return self._watermarks.get(feed_url)

    def snapshot(self) -> dict[str, datetime]:
        """Return a copy of the whole mapping."""
        return dict(self._watermarks)

    @property
    def running(self) -> bool:
        return self._owner is not None and not self._owner.done()

    def start(self) -> None:
        """Start the owner task that applies updates."""
        if self.running:
            return
        self._owner = asyncio.create_task(self._run(), name="watermark-store")
        logger.debug("Watermark store started")

    async def update(self, feed_url: str, timestamp: datetime) -> bool:
        """
        Request a watermark advance and wait until it is applied.

        Parameters
        ----------
        feed_url : str
            Feed identity.
        timestamp : datetime
            Candidate watermark.

        Returns
        -------
        bool
            True if the watermark advanced, False if the candidate was not
            newer than the current value.
        """
        if not self.running:
            raise RuntimeError("Watermark store not started")

        future = asyncio.get_running_loop().create_future()
        await self._queue.put(_UpdateRequest(feed_url, timestamp, future))
        return await future

    async def close(self) -> None:
        """Apply pending updates and stop the owner task."""
        if self._owner is None:
            return
        if not self._owner.done():
            await self._queue.put(None)
        await self._owner
        self._owner = None
        logger.debug("Watermark store stopped")

    async def _run(self) -> None:
        while True:
            request = await self._queue.get()
            if request is None:
                return
            try:
                advanced = await self._apply(request.feed_url, request.timestamp)
            except Exception as e:
                logger.exception("Failed to apply watermark for %s", request.feed_url)
                if not request.future.done():
                    request.future.set_exception(e)
                continue
            if not request.future.done():
                request.future.set_result(advanced)

    async def _apply(self, feed_url: str, timestamp: datetime) -> bool:
        timestamp = _as_utc(timestamp)
        current = self._watermarks.get(feed_url)
        if current is not None and timestamp <= current:
            logger.debug(
                "Ignoring watermark %s for %s (current: %s)",
                timestamp.isoformat(),
                feed_url,
                current.isoformat(),
            )
            return False

        watermarks = dict(self._watermarks)
        watermarks[feed_url] = timestamp
        self._watermarks = watermarks

        try:
            await asyncio.to_thread(self._write_snapshot, watermarks)
        except (OSError, TypeError, ValueError) as e:
            self._report(
                PersistenceError(f"Failed to write history file {self.path}: {e}", feed_url)
            )
        return True

    def _write_snapshot(self, watermarks: dict[str, datetime]) -> None:
        logger.debug("Updating history file %s", self.path)
        data = json.dumps(
            {url: ts.isoformat() for url, ts in sorted(watermarks.items())},
            indent=2,
        )

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_path = Path(tmp.name)
            try:
                tmp.write(data + "\n")
                tmp.flush()
                os.fsync(tmp.fileno())
            except OSError:
                tmp.close()
                tmp_path.unlink(missing_ok=True)
                raise

        try:
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        self.writes += 1

    def _report(self, error: PersistenceError) -> None:
        if self.error_sink is not None:
            self.error_sink.report(error)
        else:
            logger.error("%s", error)

    async def __aenter__(self) -> "WatermarkStore":
        """Async context manager entry."""
        self.load()
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
