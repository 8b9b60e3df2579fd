"""Sampled transaction events for one harvest cycle."""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass
from typing import Mapping

from .models import TransactionContext

Event = Mapping[str, object]


@dataclass(frozen=True, slots=True)
class EventSample:
    """Events retained by a reservoir plus how many were seen."""

    events: tuple[Event, ...]
    seen: int


class EventReservoir:
    """Reservoir sampling with a fixed capacity."""

    def __init__(self, capacity: int = 1000, *, rng: random.Random | None = None) -> None:
        self._capacity = capacity
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._events: list[Event] = []
        self._seen = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._events)

    def add(self, event: Event) -> None:
        with self._lock:
            if len(self._events) < self._capacity:
                self._events.append(event)
            else:
                index = self._rng.randint(0, self._seen)
                if index < self._capacity:
                    self._events[index] = event
            self._seen += 1

    def swap(self) -> tuple[list[Event], int]:
        with self._lock:
            events, seen = self._events, self._seen
            self._events, self._seen = [], 0
        return events, seen

    def harvest(self) -> EventSample:
        events, seen = self.swap()
        return EventSample(events=tuple(events), seen=seen)


def transaction_event(txn: TransactionContext, duration: float) -> dict[str, object]:
    """Intrinsic attributes of a finished transaction."""

    event: dict[str, object] = {
        "type": "Transaction",
        "name": txn.name,
        "timestamp": txn.start,
        "duration": duration,
    }
    if txn.inbound is not None or txn.path_hash:
        event["nr.guid"] = txn.guid
        event["nr.tripId"] = txn.trip_id
        if txn.path_hash:
            event["nr.pathHash"] = txn.path_hash
        if txn.inbound is not None:
            if txn.inbound.referring_guid:
                event["nr.referringTransactionGuid"] = txn.inbound.referring_guid
            if txn.inbound.path_hash:
                event["nr.referringPathHash"] = txn.inbound.path_hash
    if txn.trace_id:
        event["traceId"] = txn.trace_id
        event["priority"] = txn.priority
        event["sampled"] = txn.sampled
    if txn.synthetics is not None:
        event["nr.syntheticsResourceId"] = txn.synthetics.resource_id
        event["nr.syntheticsJobId"] = txn.synthetics.job_id
        event["nr.syntheticsMonitorId"] = txn.synthetics.monitor_id
    return event


__all__ = ["Event", "EventReservoir", "EventSample", "transaction_event"]
