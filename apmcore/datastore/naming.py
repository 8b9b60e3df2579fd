"""Metric names, synthetic query text and instance identity for datastore calls."""

from __future__ import annotations

from dataclasses import dataclass

from sqlglot import exp, parse_one
from sqlglot.errors import SqlglotError

from ..models import DatastoreSegment

UNKNOWN_PRODUCT = "Unknown"
UNKNOWN_OPERATION = "other"
UNKNOWN_COLLECTION = "unknown"
UNKNOWN_INSTANCE = "unknown"

LOOPBACK_HOSTS = frozenset(
    {
        "localhost",
        "127.0.0.1",
        "0.0.0.0",
        "0:0:0:0:0:0:0:1",
        "::1",
        "0:0:0:0:0:0:0:0",
        "::",
    }
)

_STATEMENT_OPERATIONS: tuple[tuple[type[exp.Expression], str], ...] = (
    (exp.Select, "select"),
    (exp.Union, "select"),
    (exp.Insert, "insert"),
    (exp.Update, "update"),
    (exp.Delete, "delete"),
)


@dataclass(frozen=True, slots=True)
class DatastoreIdentity:
    """Product/collection/operation triple after defaults and inference."""

    product: str
    collection: str
    operation: str

    @property
    def metric_name(self) -> str:
        return datastore_metric_name(self.product, self.collection, self.operation)

    @property
    def synthetic_query(self) -> str:
        return synthetic_query(self.product, self.collection, self.operation)


def datastore_metric_name(product: str, collection: str, operation: str) -> str:
    product = product or UNKNOWN_PRODUCT
    operation = operation or UNKNOWN_OPERATION
    if collection:
        return f"Datastore/statement/{product}/{collection}/{operation}"
    return f"Datastore/operation/{product}/{operation}"


def synthetic_query(product: str, collection: str, operation: str) -> str:
    """Stand-in query text used when no SQL may be (or was) captured."""

    return (
        f"'{operation or UNKNOWN_OPERATION}' on "
        f"'{collection or UNKNOWN_COLLECTION}' using "
        f"'{product or UNKNOWN_PRODUCT}'"
    )


def resolve_identity(
    segment: DatastoreSegment,
    *,
    infer: bool = False,
    dialect: str | None = None,
) -> DatastoreIdentity:
    """Apply defaults to the segment's naming fields.

    With ``infer`` set, a missing operation or collection is filled in from
    the parameterized query; otherwise the fields are used as given.
    """

    collection = segment.collection
    operation = segment.operation
    if infer and segment.parameterized_query and not (collection and operation):
        inferred_operation, inferred_collection = infer_statement(segment.parameterized_query, dialect=dialect)
        operation = operation or inferred_operation
        collection = collection or inferred_collection
    return DatastoreIdentity(
        product=segment.product or UNKNOWN_PRODUCT,
        collection=collection,
        operation=operation or UNKNOWN_OPERATION,
    )


def infer_statement(query: str, *, dialect: str | None = None) -> tuple[str, str]:
    """Return (operation, first table) for a SQL statement, empty when unknown."""

    stripped = query.strip()
    if not stripped:
        return "", ""
    try:
        expression = parse_one(stripped, read=dialect)
    except (SqlglotError, ValueError):
        return "", ""
    if expression is None:
        return "", ""
    operation = ""
    for node_type, label in _STATEMENT_OPERATIONS:
        if isinstance(expression, node_type):
            operation = label
            break
    table = expression.find(exp.Table)
    collection = table.name if table is not None else ""
    return operation, collection or ""


def instance_identity(host: str, port_path_or_id: str, *, instance_reporting: bool) -> tuple[str, str]:
    """Return the (host, port/path/id) pair that may be reported.

    Loopback aliases suppress both values rather than leak a meaningless
    local identifier.
    """

    if not instance_reporting:
        return "", ""
    if host.strip().lower() in LOOPBACK_HOSTS:
        return "", ""
    if not host and not port_path_or_id:
        return "", ""
    return host or UNKNOWN_INSTANCE, port_path_or_id or UNKNOWN_INSTANCE


__all__ = [
    "DatastoreIdentity",
    "LOOPBACK_HOSTS",
    "UNKNOWN_INSTANCE",
    "datastore_metric_name",
    "infer_statement",
    "instance_identity",
    "resolve_identity",
    "synthetic_query",
]
