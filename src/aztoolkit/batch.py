"""Buffered CSV export with header-once semantics.

Rows are serialized as CSV lines on append and written to a sink in
batches. The header is written with the first batch of a destination and
never again. A failed write leaves the buffer untouched and poisons the
cache: a destination that may hold a partial batch is not written to again.
An export with no rows writes nothing but still empties the destination.
"""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Iterable, Sequence
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, TextIO

from azure.core.credentials import TokenCredential
from azure.storage.blob import BlobClient

from .config import DEFAULT_BATCH_SIZE

logger = logging.getLogger(__name__)


class FlushTrigger(str, Enum):
    """When maybe_flush writes the buffer."""

    # Buffer length is an exact multiple of the batch size
    MULTIPLE = "multiple"
    # Buffer length reached or passed the batch size (bulk-copy style)
    THRESHOLD = "threshold"


class PartialFlushFailure(Exception):
    """A batch write failed; the destination may hold a partial batch."""

    def __init__(self, message: str, pending_rows: int) -> None:
        super().__init__(message)
        self.pending_rows = pending_rows


class RowSink(Protocol):
    """Destination for serialized CSV lines."""

    name: str

    def reset(self) -> None:
        """Empty the destination. Idempotent; the first write implies it."""
        ...

    def write(self, lines: Sequence[str]) -> None: ...


def serialize_row(row: Iterable[Any]) -> str:
    """Serialize one row as a CSV line (with trailing newline)."""
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(
        "" if value is None else value for value in row
    )
    return buffer.getvalue()


class FileSink:
    """Appends lines to a local file; the file is truncated on reset or first write."""

    def __init__(self, path: Path, encoding: str = "utf-8") -> None:
        self.path = path
        self.name = str(path)
        self._encoding = encoding
        self._opened = False

    def reset(self) -> None:
        if not self._opened:
            self.path.write_text("", encoding=self._encoding)
            self._opened = True

    def write(self, lines: Sequence[str]) -> None:
        self.reset()
        with self.path.open("a", encoding=self._encoding, newline="") as handle:
            handle.writelines(lines)


class StreamSink:
    """Writes lines to an open text stream such as stdout."""

    def __init__(self, stream: TextIO, name: str = "<stream>") -> None:
        self._stream = stream
        self.name = name

    def reset(self) -> None:
        pass

    def write(self, lines: Sequence[str]) -> None:
        self._stream.writelines(lines)
        self._stream.flush()


class BlobSink:
    """Appends lines to an Azure append blob.

    The blob is (re)created on reset or first write so a new export starts empty.
    """

    def __init__(self, blob_client: BlobClient, encoding: str = "utf-8") -> None:
        self._blob = blob_client
        self.name = blob_client.url
        self._encoding = encoding
        self._created = False

    @classmethod
    def from_url(cls, blob_url: str, credential: TokenCredential) -> BlobSink:
        return cls(BlobClient.from_blob_url(blob_url, credential=credential))

    def reset(self) -> None:
        if not self._created:
            self._blob.create_append_blob()
            self._created = True

    def write(self, lines: Sequence[str]) -> None:
        self.reset()
        self._blob.append_block("".join(lines).encode(self._encoding))


def is_blob_url(destination: str) -> bool:
    return destination.startswith("https://") and ".blob." in destination


class BatchTransferCache:
    """Accumulates rows and flushes them to a sink in batches.

    Usage:
        with BatchTransferCache(FileSink(path), header=["id", "name"]) as cache:
            for row in rows:
                cache.append(row)
                cache.maybe_flush()
    """

    def __init__(
        self,
        sink: RowSink,
        header: Sequence[str] | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        trigger: FlushTrigger = FlushTrigger.MULTIPLE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._sink = sink
        self._header = serialize_row(header) if header is not None else None
        self._batch_size = batch_size
        self._trigger = trigger
        self._buffer: list[str] = []
        self._header_written = False
        self._failed = False
        self.flush_count = 0
        self.rows_written = 0

    @property
    def pending(self) -> int:
        """Rows buffered but not yet written."""
        return len(self._buffer)

    def append(self, row: Iterable[Any]) -> None:
        """Buffer one row. No I/O."""
        self._ensure_usable()
        self._buffer.append(serialize_row(row))

    def maybe_flush(self) -> bool:
        """Flush when the batch trigger is met.

        Returns:
            True if a write happened.
        """
        self._ensure_usable()
        size = len(self._buffer)
        if size == 0:
            return False

        if self._trigger == FlushTrigger.MULTIPLE:
            due = size % self._batch_size == 0
        else:
            due = size >= self._batch_size

        if due:
            self._flush()
        return due

    def final_flush(self) -> None:
        """Write whatever is left. Call once at end of input.

        An export that produced no rows issues no write, but the sink is
        still reset so a destination left by an earlier run ends up empty.
        """
        self._ensure_usable()
        if self._buffer:
            self._flush()
        elif self.flush_count == 0:
            self._reset_sink()

        logger.info(
            "Export complete",
            extra={
                "destination": self._sink.name,
                "rows_written": self.rows_written,
                "flushes": self.flush_count,
            },
        )

    def _flush(self) -> None:
        lines = list(self._buffer)
        if self._header is not None and not self._header_written:
            lines.insert(0, self._header)

        try:
            self._sink.write(lines)
        except Exception as e:
            self._failed = True
            logger.error(
                "Batch write failed",
                extra={
                    "destination": self._sink.name,
                    "pending_rows": len(self._buffer),
                    "error": str(e),
                },
            )
            raise PartialFlushFailure(
                f"Write to {self._sink.name} failed: {e}", pending_rows=len(self._buffer)
            ) from e

        self._header_written = True
        self.flush_count += 1
        self.rows_written += len(self._buffer)
        logger.debug(
            "Batch flushed",
            extra={"destination": self._sink.name, "rows": len(self._buffer)},
        )
        self._buffer.clear()

    def _reset_sink(self) -> None:
        try:
            self._sink.reset()
        except Exception as e:
            self._failed = True
            logger.error(
                "Destination reset failed",
                extra={"destination": self._sink.name, "error": str(e)},
            )
            raise PartialFlushFailure(
                f"Reset of {self._sink.name} failed: {e}", pending_rows=0
            ) from e

    def _ensure_usable(self) -> None:
        if self._failed:
            raise PartialFlushFailure(
                f"Destination {self._sink.name} had a failed write and cannot be reused",
                pending_rows=len(self._buffer),
            )

    def __enter__(self) -> BatchTransferCache:
        return self

    def __exit__(self, exc_type: Any, *args: Any) -> None:
        if exc_type is None:
            self.final_flush()
