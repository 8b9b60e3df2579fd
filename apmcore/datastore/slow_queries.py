"""Aggregation of slow datastore queries within one harvest cycle."""

from __future__ import annotations

import base64
import json
import logging
import threading
import zlib
from dataclasses import dataclass
from typing import Callable, Iterable
from urllib.parse import urlsplit, urlunsplit

from ..config import AgentConfig
from ..models import DatastoreSegment, TransactionContext
from ..security import DataClass, PolicyDecision, SecurityPolicyGate
from .naming import DatastoreIdentity, instance_identity, resolve_identity
from .params import validate_parameters

LOG = logging.getLogger(__name__)

GateProvider = Callable[[], SecurityPolicyGate]
Signature = tuple[str, str]


@dataclass(slots=True)
class SlowQueryRecord:
    """All occurrences of one query signature in a harvest cycle."""

    metric_name: str
    query: str
    txn_name: str
    txn_url: str
    params: dict[str, object] | None
    database_name: str
    host: str
    port_path_or_id: str
    count: int = 0
    total_duration: float = 0.0
    min_duration: float = 0.0
    max_duration: float = 0.0

    @property
    def signature(self) -> Signature:
        return self.metric_name, normalize_query(self.query)

    def merge_duration(self, duration: float) -> None:
        """Fold one more occurrence into the statistics."""

        self.total_duration += duration
        self.min_duration = min(self.min_duration, duration) if self.count else duration
        self.max_duration = max(self.max_duration, duration)
        # Count last: the minimum above depends on the initial value.
        self.count += 1

    def to_wire(self) -> list[object]:
        return [
            self.count,
            self.metric_name,
            self.query,
            self.txn_name,
            self.txn_url,
            encode_params_blob(self.params),
            self.database_name,
            self.host,
            self.port_path_or_id,
        ]


def normalize_query(query: str) -> str:
    return " ".join(query.split())


def encode_params_blob(params: dict[str, object] | None) -> str | None:
    """Compress a parameter map the way the collector expects, or None."""

    if params is None:
        return None
    payload = json.dumps(params, separators=(",", ":"), sort_keys=True)
    return base64.standard_b64encode(zlib.compress(payload.encode("utf-8"))).decode("latin-1")


def decode_params_blob(blob: str | None) -> dict[str, object] | None:
    if blob is None:
        return None
    return json.loads(zlib.decompress(base64.standard_b64decode(blob)).decode("utf-8"))


def rank_slow_queries(records: Iterable[SlowQueryRecord], limit: int) -> list[SlowQueryRecord]:
    """Top ``limit`` records by total duration, slowest first."""

    return sorted(records, key=lambda record: record.total_duration, reverse=True)[:limit]


class SlowQueryAggregator:
    """Deduplicates slow datastore calls and keeps a bounded top-N set."""

    def __init__(self, config: AgentConfig, gate: GateProvider | None = None) -> None:
        self._config = config
        if gate is None:
            static_gate = SecurityPolicyGate(config)

            def gate() -> SecurityPolicyGate:
                return static_gate

        self._gate = gate
        self._lock = threading.Lock()
        self._table: dict[Signature, SlowQueryRecord] = {}

    def __len__(self) -> int:
        return len(self._table)

    def record(
        self,
        segment: DatastoreSegment,
        txn: TransactionContext,
        *,
        identity: DatastoreIdentity | None = None,
    ) -> bool:
        """Ingest one completed datastore segment; returns True if retained."""

        gate = self._gate()
        if not gate.slow_queries_enabled():
            return False
        duration = segment.duration
        if duration < self._config.datastore_tracer.slow_query.threshold:
            return False

        if identity is None:
            settings = self._config.datastore_tracer
            identity = resolve_identity(segment, infer=settings.infer_from_query, dialect=settings.sql_dialect)
        sample = self._build_sample(segment, txn, gate, identity)
        key = sample.signature
        with self._lock:
            entry = self._table.get(key)
            if entry is None:
                entry = self._admit(key, sample, duration)
                if entry is None:
                    return False
            entry.merge_duration(duration)
        return True

    def harvest(self) -> list[SlowQueryRecord]:
        """Return the ranked records of the closed cycle and reset."""

        return rank_slow_queries(self.swap_table().values(), self._config.harvest.max_slow_queries)

    def swap_table(self) -> dict[Signature, SlowQueryRecord]:
        """Detach the live table, leaving an empty one for new records."""

        with self._lock:
            table, self._table = self._table, {}
        return table

    def _admit(self, key: Signature, sample: SlowQueryRecord, duration: float) -> SlowQueryRecord | None:
        limit = self._config.harvest.max_tracked_queries
        if len(self._table) >= limit:
            victim_key, victim = min(self._table.items(), key=lambda item: item[1].total_duration)
            if duration <= victim.total_duration:
                return None
            del self._table[victim_key]
        self._table[key] = sample
        return sample

    def _build_sample(
        self,
        segment: DatastoreSegment,
        txn: TransactionContext,
        gate: SecurityPolicyGate,
        identity: DatastoreIdentity,
    ) -> SlowQueryRecord:
        settings = self._config.datastore_tracer

        query = segment.parameterized_query
        if not query or gate.decide(DataClass.RECORD_SQL) is PolicyDecision.DENY:
            query = identity.synthetic_query

        params: dict[str, object] | None = None
        if segment.query_parameters and gate.decide(DataClass.QUERY_PARAMETERS) is PolicyDecision.ALLOW_RAW:
            validation = validate_parameters(segment.query_parameters)
            if not validation.ok:
                LOG.error(
                    "Dropped invalid datastore query parameters",
                    extra={"metric": identity.metric_name, "reasons": list(validation.dropped)},
                )
            params = validation.params or None

        host, port_path_or_id = instance_identity(
            segment.host,
            segment.port_path_or_id,
            instance_reporting=settings.instance_reporting,
        )
        return SlowQueryRecord(
            metric_name=identity.metric_name,
            query=query,
            txn_name=txn.name,
            txn_url=_safe_url(txn.url),
            params=params,
            database_name=segment.database_name if settings.database_name_reporting else "",
            host=host,
            port_path_or_id=port_path_or_id,
        )


def _safe_url(url: str | None) -> str:
    """Strip credentials, query string and fragment from a request URL."""

    if not url:
        return ""
    parts = urlsplit(url)
    netloc = parts.hostname or ""
    try:
        port = parts.port
    except ValueError:
        port = None
    if port is not None:
        netloc = f"{netloc}:{port}"
    return urlunsplit((parts.scheme, netloc, parts.path, "", ""))


__all__ = [
    "SlowQueryAggregator",
    "SlowQueryRecord",
    "decode_params_blob",
    "encode_params_blob",
    "normalize_query",
    "rank_slow_queries",
]
