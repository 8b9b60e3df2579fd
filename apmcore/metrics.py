"""Timed metric aggregation for one harvest cycle."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterable

from .datastore.naming import DatastoreIdentity

MetricKey = tuple[str, str]


@dataclass(slots=True)
class TimeStats:
    """Call count and timing statistics for one metric."""

    call_count: int = 0
    total_call_time: float = 0.0
    total_exclusive_call_time: float = 0.0
    min_call_time: float = 0.0
    max_call_time: float = 0.0
    sum_of_squares: float = 0.0

    def merge_raw_time_metric(self, duration: float, exclusive: float | None = None) -> None:
        if exclusive is None:
            exclusive = duration
        self.total_call_time += duration
        self.total_exclusive_call_time += exclusive
        self.min_call_time = min(self.min_call_time, duration) if self.call_count else duration
        self.max_call_time = max(self.max_call_time, duration)
        self.sum_of_squares += duration * duration
        self.call_count += 1

    def merge_stats(self, other: TimeStats) -> None:
        if not other.call_count:
            return
        self.total_call_time += other.total_call_time
        self.total_exclusive_call_time += other.total_exclusive_call_time
        self.min_call_time = min(self.min_call_time, other.min_call_time) if self.call_count else other.min_call_time
        self.max_call_time = max(self.max_call_time, other.max_call_time)
        self.sum_of_squares += other.sum_of_squares
        self.call_count += other.call_count

    def to_wire(self) -> list[float]:
        return [
            self.call_count,
            self.total_call_time,
            self.total_exclusive_call_time,
            self.min_call_time,
            self.max_call_time,
            self.sum_of_squares,
        ]


class MetricTable:
    """Metrics keyed by (name, scope); an empty scope means unscoped."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stats: dict[MetricKey, TimeStats] = {}

    def __len__(self) -> int:
        return len(self._stats)

    def record_time_metric(self, name: str, duration: float, *, scope: str = "", exclusive: float | None = None) -> None:
        with self._lock:
            stats = self._stats.get((name, scope))
            if stats is None:
                stats = self._stats[(name, scope)] = TimeStats()
            stats.merge_raw_time_metric(duration, exclusive)

    def record_time_metrics(self, names: Iterable[MetricKey], duration: float) -> None:
        with self._lock:
            for key in names:
                stats = self._stats.get(key)
                if stats is None:
                    stats = self._stats[key] = TimeStats()
                stats.merge_raw_time_metric(duration)

    def swap_table(self) -> dict[MetricKey, TimeStats]:
        with self._lock:
            stats, self._stats = self._stats, {}
        return stats

    def harvest(self) -> dict[MetricKey, TimeStats]:
        return self.swap_table()


def datastore_metric_names(
    identity: DatastoreIdentity,
    *,
    scope: str,
    is_web: bool,
    host: str = "",
    port_path_or_id: str = "",
) -> list[MetricKey]:
    """Rollup metrics a single datastore call contributes to."""

    product = identity.product
    suffix = "allWeb" if is_web else "allOther"
    names: list[MetricKey] = [
        ("Datastore/all", ""),
        (f"Datastore/{suffix}", ""),
        (f"Datastore/{product}/all", ""),
        (f"Datastore/{product}/{suffix}", ""),
    ]
    operation_metric = f"Datastore/operation/{product}/{identity.operation}"
    names.append((operation_metric, ""))
    if identity.collection:
        names.append((identity.metric_name, ""))
        names.append((identity.metric_name, scope))
    else:
        names.append((operation_metric, scope))
    if host and port_path_or_id:
        names.append((f"Datastore/instance/{product}/{host}/{port_path_or_id}", ""))
    return names


__all__ = ["MetricKey", "MetricTable", "TimeStats", "datastore_metric_names"]
