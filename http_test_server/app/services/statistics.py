"""Request statistics aggregation.

Counters and the per-request log are shared by every request handler. All
mutation happens under one lock; readers get an immutable snapshot.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


# Content types whose bodies are split into newline-delimited messages.
# application/json is included because some shippers send NDJSON with it.
MESSAGE_CONTENT_TYPES = frozenset((
    "application/json",
    "application/ndjson",
    "application/x-ndjson",
    "text/plain",
))


@dataclass(frozen=True)
class RequestRecord:
    """Timing and outcome of a single request.

    ``status`` is 0 when the connection was closed without a response.
    """
    start: datetime
    end: datetime
    status: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "status": self.status,
        }


@dataclass(frozen=True)
class Statistics:
    """Immutable copy of the aggregate statistics and request log."""
    byte_total: int = 0
    first_message: str = ""
    last_message: str = ""
    message_count: int = 0
    request_count: int = 0
    requests: Tuple[RequestRecord, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "byte_total": self.byte_total,
            "first_message": self.first_message,
            "last_message": self.last_message,
            "message_count": self.message_count,
            "request_count": self.request_count,
            "requests": [record.to_dict() for record in self.requests],
        }


@dataclass
class HandledRequest:
    """What the statistics layer captured about a request while serving it."""
    start: datetime
    body: bytes = b""
    content_type: str = ""
    end: Optional[datetime] = None
    status: int = 0

    def record(self) -> RequestRecord:
        return RequestRecord(
            start=self.start,
            end=self.end or self.start,
            status=self.status,
        )


def media_type(content_type: str) -> str:
    """Strip parameters from a Content-Type value: ``text/plain; charset=utf-8`` -> ``text/plain``."""
    return content_type.split(";", 1)[0].strip().lower()


def split_messages(body: bytes, content_type: str) -> List[str]:
    """Split a body into messages if its content type is newline-delimited.

    Other content types yield no messages. An empty body of a recognised type
    is a single empty message.
    """
    if media_type(content_type) not in MESSAGE_CONTENT_TYPES:
        return []
    return body.decode("utf-8", errors="replace").split("\n")


@dataclass
class _Counters:
    byte_total: int = 0
    first_message: str = ""
    last_message: str = ""
    message_count: int = 0
    request_count: int = 0
    requests: List[RequestRecord] = field(default_factory=list)


class StatisticsAggregator:
    """Thread-safe statistics shared by all request handlers.

    Usage:
        aggregator = StatisticsAggregator()
        aggregator.record_request(handled)
        summary = aggregator.snapshot()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters = _Counters()

    def record_request(self, handled: HandledRequest) -> None:
        """Count a finished request and append it to the request log."""
        # Body splitting happens outside the lock.
        messages = split_messages(handled.body, handled.content_type)
        non_empty = [message for message in messages if message]
        record = handled.record()

        with self._lock:
            counters = self._counters
            counters.request_count += 1
            counters.byte_total += len(handled.body)
            counters.message_count += len(messages)
            if not counters.first_message and non_empty:
                counters.first_message = non_empty[0]
            if non_empty:
                counters.last_message = non_empty[-1]
            counters.requests.append(record)

    @property
    def message_count(self) -> int:
        with self._lock:
            return self._counters.message_count

    @property
    def request_count(self) -> int:
        with self._lock:
            return self._counters.request_count

    def snapshot(self) -> Statistics:
        """Return an immutable copy of the current statistics."""
        with self._lock:
            counters = self._counters
            return Statistics(
                byte_total=counters.byte_total,
                first_message=counters.first_message,
                last_message=counters.last_message,
                message_count=counters.message_count,
                request_count=counters.request_count,
                requests=tuple(counters.requests),
            )
