"""Shared dataclasses used across the recording, codec and harvest modules."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class SegmentCategory(str, Enum):
    """Kinds of timed segments a transaction can contain."""

    DATASTORE = "datastore"
    EXTERNAL = "external"
    CUSTOM = "custom"


def new_guid() -> str:
    """Return a 16 hex digit identifier for transactions and spans."""

    return uuid.uuid4().hex[:16]


@dataclass(frozen=True, slots=True)
class DatastoreSegment:
    """A completed datastore call."""

    start: float
    stop: float
    product: str = ""
    collection: str = ""
    operation: str = ""
    host: str = ""
    port_path_or_id: str = ""
    database_name: str = ""
    parameterized_query: str = ""
    query_parameters: Mapping[str, object] | None = None

    @property
    def category(self) -> SegmentCategory:
        return SegmentCategory.DATASTORE

    @property
    def duration(self) -> float:
        return max(self.stop - self.start, 0.0)


@dataclass(frozen=True, slots=True)
class CodeLocation:
    """A line of source code a traced operation is attributed to."""

    line_no: int = 0
    function: str = ""
    file_path: str = ""

    @property
    def namespace(self) -> str:
        namespace, _, _ = self.function.rpartition(".")
        return namespace

    @property
    def short_function(self) -> str:
        return self.function.rpartition(".")[2]


@dataclass(frozen=True, slots=True)
class SyntheticsInfo:
    """Decoded synthetics monitor request header."""

    version: int
    account_id: int
    resource_id: str
    job_id: str
    monitor_id: str
    encoded: str = ""


@dataclass(frozen=True, slots=True)
class InboundCrossProcess:
    """Trusted cross-application context received from an upstream caller."""

    cross_process_id: str
    account_id: int
    referring_guid: str = ""
    trip_id: str = ""
    path_hash: str = ""
    record_trace: bool = False


@dataclass(frozen=True, slots=True)
class AppData:
    """Response-side cross-application payload."""

    cross_process_id: str
    transaction_name: str
    queue_time: float
    response_time: float
    content_length: int
    guid: str
    record_trace: bool = False


@dataclass(slots=True)
class TransactionContext:
    """State of the transaction that owns a segment."""

    name: str
    url: str | None = None
    is_web: bool = True
    guid: str = field(default_factory=new_guid)
    start: float = field(default_factory=time.time)
    synthetics: SyntheticsInfo | None = None
    inbound: InboundCrossProcess | None = None
    path_hash: str | None = None
    trace_id: str = ""
    parent_span_id: str = ""
    priority: float = 0.0
    sampled: bool = False

    @property
    def trip_id(self) -> str:
        if self.inbound and self.inbound.trip_id:
            return self.inbound.trip_id
        return self.guid

    @property
    def referring_path_hash(self) -> str | None:
        if self.inbound and self.inbound.path_hash:
            return self.inbound.path_hash
        return None


__all__ = [
    "AppData",
    "CodeLocation",
    "DatastoreSegment",
    "InboundCrossProcess",
    "SegmentCategory",
    "SyntheticsInfo",
    "TransactionContext",
    "new_guid",
]
