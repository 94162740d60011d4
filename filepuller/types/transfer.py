"""
Transfer-related type definitions for internal use.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel

from filepuller.errors import UnsafeKeyError

if TYPE_CHECKING:
    from filepuller.config import Settings
    from filepuller.observability.metrics import MetricsCollector
    from filepuller.worker.retrieval import ObjectRetriever


class Delivery(Protocol):
    """
    A single broker delivery.

    `nats.aio.msg.Msg` satisfies this protocol; tests supply an in-memory fake.
    """

    subject: str
    data: bytes

    @property
    def metadata(self) -> Any: ...

    async def ack_sync(self, timeout: float = ...) -> Any: ...

    async def nak(self, delay: float | None = None) -> None: ...

    async def term(self) -> None: ...

    async def in_progress(self) -> None: ...


class TransferResult(BaseModel):
    """
    Result of a completed retrieval.
    Returned by the retriever once the file is durably in place.
    """

    key: str
    destination: Path
    size_bytes: int
    duration_ms: float


@dataclass
class Notification:
    """
    An upload notification taken off the durable consumer.

    `key` is the object key used against the object store. `destination_name`
    is the path, relative to the destination root, the object is written to;
    it differs from `key` only when destination quote stripping is disabled.
    """

    msg: Delivery
    raw_key: str
    key: str
    destination_name: str
    subject: str
    num_delivered: int
    stream_sequence: int | None
    received_at: datetime
    ack_wait: timedelta

    @classmethod
    def from_msg(
        cls,
        msg: Delivery,
        *,
        quote_chars: str = '"',
        strip_destination_quotes: bool = True,
        ack_wait_seconds: float = 300.0,
    ) -> "Notification":
        """
        Build a notification from a broker delivery.

        Raises:
            UnsafeKeyError: If the payload is not UTF-8 or the key is empty.
        """
        try:
            raw_key = msg.data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise UnsafeKeyError(repr(msg.data[:64]), "payload is not valid UTF-8") from e

        key = raw_key.strip(quote_chars) if quote_chars else raw_key
        if not key:
            raise UnsafeKeyError(raw_key, "empty object key")

        metadata = msg.metadata
        sequence = getattr(metadata, "sequence", None)

        return cls(
            msg=msg,
            raw_key=raw_key,
            key=key,
            destination_name=key if strip_destination_quotes else raw_key,
            subject=msg.subject,
            num_delivered=getattr(metadata, "num_delivered", None) or 1,
            stream_sequence=getattr(sequence, "stream", None),
            received_at=datetime.now(timezone.utc),
            ack_wait=timedelta(seconds=ack_wait_seconds),
        )

    @property
    def is_redelivery(self) -> bool:
        """Check if the broker has delivered this notification before."""
        return self.num_delivered > 1

    @property
    def redelivery_deadline(self) -> datetime:
        """Time after which the broker redelivers an unsettled notification."""
        return self.received_at + self.ack_wait

    def log_fields(self) -> dict[str, Any]:
        """Fields identifying this notification in log lines."""
        return {
            "object_key": self.key,
            "num_delivered": self.num_delivered,
            "stream_sequence": self.stream_sequence,
        }


@dataclass
class TransferContext:
    """
    Shared, read-mostly handles passed to the loop and the handler.
    Replaces process-wide globals so the handler can run against fakes.
    """

    settings: "Settings"
    retriever: "ObjectRetriever"
    metrics: "MetricsCollector"
