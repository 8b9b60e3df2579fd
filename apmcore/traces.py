"""Transaction traces kept for one harvest cycle."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Mapping

from .models import TransactionContext


@dataclass(frozen=True, slots=True)
class TransactionTrace:
    """A finished transaction selected for a detailed trace."""

    start: float
    duration: float
    name: str
    url: str | None = None
    cat_guid: str = ""
    force_persist: bool = False
    synthetics_resource_id: str = ""
    intrinsics: Mapping[str, object] = field(default_factory=dict)
    agent_attributes: Mapping[str, object] = field(default_factory=dict)
    user_attributes: Mapping[str, object] = field(default_factory=dict)

    @classmethod
    def from_transaction(
        cls,
        txn: TransactionContext,
        duration: float,
        *,
        agent_attributes: Mapping[str, object] | None = None,
        user_attributes: Mapping[str, object] | None = None,
    ) -> TransactionTrace:
        intrinsics: dict[str, object] = {}
        resource_id = ""
        if txn.synthetics is not None:
            resource_id = txn.synthetics.resource_id
            intrinsics["synthetics_resource_id"] = txn.synthetics.resource_id
            intrinsics["synthetics_job_id"] = txn.synthetics.job_id
            intrinsics["synthetics_monitor_id"] = txn.synthetics.monitor_id
        cat_guid = ""
        if txn.inbound is not None or txn.path_hash:
            cat_guid = txn.guid
            intrinsics["trip_id"] = txn.trip_id
            if txn.path_hash:
                intrinsics["path_hash"] = txn.path_hash
        if txn.trace_id:
            intrinsics["traceId"] = txn.trace_id
        return cls(
            start=txn.start,
            duration=duration,
            name=txn.name,
            url=txn.url,
            cat_guid=cat_guid,
            force_persist=txn.synthetics is not None,
            synthetics_resource_id=resource_id,
            intrinsics=intrinsics,
            agent_attributes=dict(agent_attributes or {}),
            user_attributes=dict(user_attributes or {}),
        )

    @property
    def is_synthetics(self) -> bool:
        return bool(self.synthetics_resource_id)

    def to_wire(self) -> list[object]:
        duration_ms = self.duration * 1000.0
        root = [0, duration_ms, "ROOT", {}, [[0, duration_ms, self.name, {}, []]]]
        details = [
            0,
            {},
            {},
            root,
            {
                "agentAttributes": dict(self.agent_attributes),
                "userAttributes": dict(self.user_attributes),
                "intrinsics": dict(self.intrinsics),
            },
        ]
        return [
            self.start * 1000.0,
            duration_ms,
            self.name,
            self.url,
            details,
            self.cat_guid,
            None,
            self.force_persist,
            None,
            self.synthetics_resource_id,
        ]


class TraceCollector:
    """Keeps the slowest trace plus a bounded set of synthetics traces."""

    def __init__(self, max_synthetics: int = 20) -> None:
        self._max_synthetics = max_synthetics
        self._lock = threading.Lock()
        self._slowest: TransactionTrace | None = None
        self._synthetics: list[TransactionTrace] = []

    def offer(self, trace: TransactionTrace) -> None:
        with self._lock:
            if trace.is_synthetics and len(self._synthetics) < self._max_synthetics:
                self._synthetics.append(trace)
                return
            if self._slowest is None or trace.duration > self._slowest.duration:
                self._slowest = trace

    def swap(self) -> tuple[TransactionTrace | None, list[TransactionTrace]]:
        with self._lock:
            slowest, synthetics = self._slowest, self._synthetics
            self._slowest, self._synthetics = None, []
        return slowest, synthetics

    def harvest(self) -> tuple[TransactionTrace, ...]:
        slowest, synthetics = self.swap()
        traces = list(synthetics)
        if slowest is not None:
            traces.insert(0, slowest)
        return tuple(traces)


__all__ = ["TraceCollector", "TransactionTrace"]
