"""Tests for datastore metric naming and instance identity."""

from __future__ import annotations

import pytest

from apmcore.datastore import (
    datastore_metric_name,
    infer_statement,
    instance_identity,
    resolve_identity,
    synthetic_query,
)
from apmcore.models import DatastoreSegment


def test_metric_name_uses_statement_form_with_collection() -> None:
    assert datastore_metric_name("MySQL", "users", "INSERT") == "Datastore/statement/MySQL/users/INSERT"


def test_metric_name_uses_operation_form_without_collection() -> None:
    assert datastore_metric_name("Redis", "", "GET") == "Datastore/operation/Redis/GET"


def test_metric_name_defaults_product_and_operation() -> None:
    assert datastore_metric_name("", "", "") == "Datastore/operation/Unknown/other"


def test_synthetic_query_fills_unknown_parts() -> None:
    assert synthetic_query("MySQL", "", "select") == "'select' on 'unknown' using 'MySQL'"


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        ("SELECT name FROM customers WHERE id = 3", ("select", "customers")),
        ("INSERT INTO orders (id) VALUES (1)", ("insert", "orders")),
        ("UPDATE stock SET qty = 0 WHERE sku = 'a'", ("update", "stock")),
        ("DELETE FROM sessions WHERE expired = TRUE", ("delete", "sessions")),
        ("", ("", "")),
    ],
)
def test_infer_statement(query: str, expected: tuple[str, str]) -> None:
    assert infer_statement(query) == expected


def test_resolve_identity_keeps_explicit_values() -> None:
    segment = DatastoreSegment(
        start=0.0,
        stop=1.0,
        product="Postgres",
        collection="explicit",
        operation="SELECT",
        parameterized_query="SELECT * FROM other_table",
    )

    identity = resolve_identity(segment)

    assert (identity.product, identity.collection, identity.operation) == ("Postgres", "explicit", "SELECT")


def test_resolve_identity_uses_fields_as_given_by_default() -> None:
    segment = DatastoreSegment(start=0.0, stop=1.0, product="MySQL", parameterized_query="SELECT * FROM users")

    identity = resolve_identity(segment)

    assert identity.metric_name == "Datastore/operation/MySQL/other"
    assert identity.collection == ""


def test_resolve_identity_infers_missing_fields_when_asked() -> None:
    segment = DatastoreSegment(start=0.0, stop=1.0, product="MySQL", parameterized_query="SELECT * FROM users")

    identity = resolve_identity(segment, infer=True)

    assert identity.metric_name == "Datastore/statement/MySQL/users/select"


def test_resolve_identity_defaults_without_query() -> None:
    identity = resolve_identity(DatastoreSegment(start=0.0, stop=1.0))

    assert identity.metric_name == "Datastore/operation/Unknown/other"
    assert identity.synthetic_query == "'other' on 'unknown' using 'Unknown'"


@pytest.mark.parametrize("host", ["localhost", "127.0.0.1", "::1", "0.0.0.0"])
def test_loopback_hosts_are_suppressed(host: str) -> None:
    assert instance_identity(host, "5432", instance_reporting=True) == ("", "")


def test_missing_half_of_instance_becomes_unknown() -> None:
    assert instance_identity("db1", "", instance_reporting=True) == ("db1", "unknown")
    assert instance_identity("", "/tmp/sock", instance_reporting=True) == ("unknown", "/tmp/sock")


def test_instance_reporting_off_suppresses_everything() -> None:
    assert instance_identity("db1", "5432", instance_reporting=False) == ("", "")
