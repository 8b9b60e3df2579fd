"""Harvest cycle: swap-and-reset of every aggregator and periodic delivery."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Protocol

from .codelocation import CodeLevelMetricsOptions, CodeLocationResolver
from .config import AgentConfig
from .datastore import (
    SlowQueryAggregator,
    SlowQueryRecord,
    instance_identity,
    rank_slow_queries,
    resolve_identity,
)
from .events import EventReservoir, EventSample, transaction_event
from .metrics import MetricKey, MetricTable, TimeStats, datastore_metric_names
from .models import DatastoreSegment, TransactionContext
from .session import AgentSession
from .traces import TraceCollector, TransactionTrace

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HarvestSnapshot:
    """Immutable telemetry of one closed harvest cycle."""

    started_at: float
    ended_at: float
    slow_queries: tuple[SlowQueryRecord, ...]
    metrics: Mapping[MetricKey, TimeStats]
    events: EventSample
    traces: tuple[TransactionTrace, ...]

    @property
    def is_empty(self) -> bool:
        return not (self.slow_queries or self.metrics or self.events.seen or self.traces)

    def slow_query_payload(self) -> list[list[object]]:
        return [record.to_wire() for record in self.slow_queries]

    def metric_payload(self) -> list[list[object]]:
        return [
            [{"name": name, "scope": scope}, stats.to_wire()]
            for (name, scope), stats in sorted(self.metrics.items())
        ]


class HarvestCoordinator:
    """Owns every aggregation window and hands out frozen snapshots.

    Each aggregator swaps its internal table under its own lock in O(1); the
    coordinator lock only serializes concurrent swaps. Ranking and freezing
    happen after all locks are released.
    """

    def __init__(
        self,
        config: AgentConfig,
        session: AgentSession | None = None,
        *,
        resolver: CodeLocationResolver | None = None,
    ) -> None:
        self._config = config
        self._session = session or AgentSession(config)
        self._resolver = resolver or CodeLocationResolver(config.code_level_metrics)
        self._slow_queries = SlowQueryAggregator(config, gate=lambda: self._session.gate)
        self._metrics = MetricTable()
        self._events = EventReservoir(config.harvest.max_event_samples)
        self._traces = TraceCollector(config.harvest.max_synthetics_traces)
        self._lock = threading.Lock()
        self._cycle_started = time.time()

    @property
    def session(self) -> AgentSession:
        return self._session

    def record_datastore_segment(self, segment: DatastoreSegment, txn: TransactionContext) -> bool:
        """Record metrics for a finished datastore call and offer it as a slow query."""

        settings = self._config.datastore_tracer
        identity = resolve_identity(segment, infer=settings.infer_from_query, dialect=settings.sql_dialect)
        host, port_path_or_id = instance_identity(
            segment.host,
            segment.port_path_or_id,
            instance_reporting=settings.instance_reporting,
        )
        self._metrics.record_time_metrics(
            datastore_metric_names(
                identity,
                scope=txn.name,
                is_web=txn.is_web,
                host=host,
                port_path_or_id=port_path_or_id,
            ),
            segment.duration,
        )
        return self._slow_queries.record(segment, txn, identity=identity)

    def record_transaction(
        self,
        txn: TransactionContext,
        duration: float,
        *,
        options: CodeLevelMetricsOptions | None = None,
        user_attributes: Mapping[str, object] | None = None,
    ) -> TransactionTrace:
        """Record the event, rollup metrics and trace candidate of a finished transaction."""

        rollup = "WebTransaction" if txn.is_web else "OtherTransaction/all"
        self._metrics.record_time_metrics(((rollup, ""), (txn.name, "")), duration)
        self._events.add(transaction_event(txn, duration))
        agent_attributes = self._resolver.attributes_for("transaction", skip=1, options=options)
        trace = TransactionTrace.from_transaction(
            txn,
            duration,
            agent_attributes=agent_attributes,
            user_attributes=user_attributes,
        )
        if self._session.state.reply is None or self._session.state.reply.collect_traces:
            self._traces.offer(trace)
        return trace

    def swap(self) -> HarvestSnapshot:
        """Close the current cycle; new records land in the next one."""

        now = time.time()
        with self._lock:
            started, self._cycle_started = self._cycle_started, now
            slow_queries = self._slow_queries.swap_table()
            metrics = self._metrics.swap_table()
            events, seen = self._events.swap()
            slowest, synthetics = self._traces.swap()

        ranked = rank_slow_queries(slow_queries.values(), self._config.harvest.max_slow_queries)
        traces = ([slowest] if slowest is not None else []) + synthetics
        return HarvestSnapshot(
            started_at=started,
            ended_at=now,
            slow_queries=tuple(ranked),
            metrics=MappingProxyType(metrics),
            events=EventSample(events=tuple(events), seen=seen),
            traces=tuple(traces),
        )


class HarvestSink(Protocol):
    """Transport collaborator that ships snapshots to the collector."""

    async def deliver(self, snapshot: HarvestSnapshot) -> None: ...


class HarvestScheduler:
    """Drives the coordinator at a fixed interval from a single task."""

    def __init__(
        self,
        coordinator: HarvestCoordinator,
        sink: HarvestSink,
        *,
        interval: float = 60.0,
    ) -> None:
        self._coordinator = coordinator
        self._sink = sink
        self._interval = interval
        self._stop = asyncio.Event()

    async def harvest_once(self) -> HarvestSnapshot:
        snapshot = self._coordinator.swap()
        if snapshot.is_empty:
            LOG.debug("Skipping delivery of empty harvest")
            return snapshot
        try:
            await self._sink.deliver(snapshot)
        except Exception:
            LOG.exception(
                "Harvest delivery failed; dropping cycle",
                extra={"slow_queries": len(snapshot.slow_queries), "metrics": len(snapshot.metrics)},
            )
        return snapshot

    async def run_forever(self) -> None:
        """Harvest every interval until :meth:`stop`, then flush once more."""

        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                await self.harvest_once()
        await self.harvest_once()

    def stop(self) -> None:
        self._stop.set()


__all__ = [
    "HarvestCoordinator",
    "HarvestScheduler",
    "HarvestSink",
    "HarvestSnapshot",
]
