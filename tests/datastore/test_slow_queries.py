"""Tests for the slow query aggregator."""

from __future__ import annotations

import logging

import pytest

from apmcore.config import AgentConfig, RecordSQL
from apmcore.datastore import SlowQueryAggregator, decode_params_blob
from apmcore.models import DatastoreSegment, TransactionContext
from apmcore.security import PolicySetting, SecurityPolicies, SecurityPolicyGate

INSERT_QUERY = "INSERT INTO users (name, age) VALUES ($1, $2)"


def _segment(duration: float = 0.5, **overrides: object) -> DatastoreSegment:
    fields: dict[str, object] = {
        "start": 0.0,
        "stop": duration,
        "product": "Postgres",
        "collection": "users",
        "operation": "INSERT",
        "host": "db.internal",
        "port_path_or_id": "5432",
        "database_name": "accounts",
        "parameterized_query": INSERT_QUERY,
        "query_parameters": {"name": "ada", "age": 36},
    }
    fields.update(overrides)
    return DatastoreSegment(**fields)  # type: ignore[arg-type]


def _txn() -> TransactionContext:
    return TransactionContext(name="WebTransaction/Go/users", url="https://user:pw@example.com/users?id=7#top")


def _aggregator(config: AgentConfig | None = None, policies: SecurityPolicies | None = None) -> SlowQueryAggregator:
    config = config or AgentConfig()
    gate = SecurityPolicyGate(config, policies)
    return SlowQueryAggregator(config, gate=lambda: gate)


def test_insert_is_recorded_with_statement_metric_and_verbatim_query() -> None:
    aggregator = _aggregator()

    assert aggregator.record(_segment(), _txn()) is True
    (record,) = aggregator.harvest()

    assert record.metric_name == "Datastore/statement/Postgres/users/INSERT"
    assert record.query == INSERT_QUERY
    assert record.count == 1
    assert record.txn_name == "WebTransaction/Go/users"
    assert record.txn_url == "https://example.com/users"
    assert record.database_name == "accounts"
    assert (record.host, record.port_path_or_id) == ("db.internal", "5432")
    assert record.params == {"name": "ada", "age": 36}


def test_wire_form_carries_compressed_params_blob() -> None:
    aggregator = _aggregator()
    aggregator.record(_segment(), _txn())

    wire = aggregator.harvest()[0].to_wire()

    assert wire[0] == 1
    assert wire[1] == "Datastore/statement/Postgres/users/INSERT"
    assert wire[2] == INSERT_QUERY
    assert decode_params_blob(wire[5]) == {"name": "ada", "age": 36}
    assert wire[6:] == ["accounts", "db.internal", "5432"]


def test_disabled_server_policy_replaces_query_and_drops_params() -> None:
    policies = SecurityPolicies(record_sql=PolicySetting(enabled=False))
    aggregator = _aggregator(policies=policies)

    aggregator.record(_segment(), _txn())
    (record,) = aggregator.harvest()

    assert record.query == "'INSERT' on 'users' using 'Postgres'"
    assert record.params is None
    assert record.to_wire()[5] is None


def test_high_security_keeps_template_without_params() -> None:
    aggregator = _aggregator(AgentConfig().with_high_security())

    aggregator.record(_segment(), _txn())
    (record,) = aggregator.harvest()

    assert record.query == INSERT_QUERY
    assert record.params is None


def test_record_sql_off_uses_synthetic_query() -> None:
    config = AgentConfig(record_sql=RecordSQL.OFF)
    aggregator = _aggregator(config)

    aggregator.record(_segment(), _txn())

    assert aggregator.harvest()[0].query == "'INSERT' on 'users' using 'Postgres'"


def test_localhost_suppresses_host_and_port() -> None:
    aggregator = _aggregator()

    aggregator.record(_segment(host="localhost", port_path_or_id="3306"), _txn())
    (record,) = aggregator.harvest()

    assert record.host == ""
    assert record.port_path_or_id == ""


def test_instance_reporting_off_suppresses_host_and_port() -> None:
    aggregator = _aggregator(AgentConfig().with_datastore(instance_reporting=False))

    aggregator.record(_segment(), _txn())
    (record,) = aggregator.harvest()

    assert (record.host, record.port_path_or_id) == ("", "")


def test_database_name_reporting_off_blanks_database() -> None:
    aggregator = _aggregator(AgentConfig().with_datastore(database_name_reporting=False))

    aggregator.record(_segment(), _txn())

    assert aggregator.harvest()[0].database_name == ""


def test_invalid_params_are_dropped_individually(caplog: pytest.LogCaptureFixture) -> None:
    aggregator = _aggregator()
    params = {
        "ok": "value",
        "long": "x" * 300,
        "nested": {"not": "allowed"},
        "k" * 256: 1,
    }

    with caplog.at_level(logging.ERROR):
        aggregator.record(_segment(query_parameters=params), _txn())
    (record,) = aggregator.harvest()

    assert record.params == {"ok": "value", "long": "x" * 255}
    errors = [entry for entry in caplog.records if entry.levelno == logging.ERROR]
    assert len(errors) == 1
    assert errors[0].metric == "Datastore/statement/Postgres/users/INSERT"


def test_below_threshold_is_skipped_and_threshold_is_inclusive() -> None:
    config = AgentConfig().with_slow_query(threshold=0.25)
    aggregator = _aggregator(config)

    assert aggregator.record(_segment(duration=0.1), _txn()) is False
    assert aggregator.record(_segment(duration=0.25), _txn()) is True
    assert len(aggregator) == 1


def test_slow_query_disabled_records_nothing() -> None:
    aggregator = _aggregator(AgentConfig().with_slow_query(enabled=False))

    assert aggregator.record(_segment(), _txn()) is False
    assert aggregator.harvest() == []


def test_collect_traces_off_records_nothing() -> None:
    config = AgentConfig()
    gate = SecurityPolicyGate(config, collect_traces=False)
    aggregator = SlowQueryAggregator(config, gate=lambda: gate)

    assert aggregator.record(_segment(), _txn()) is False


def test_duplicates_merge_statistics_and_keep_first_sample() -> None:
    aggregator = _aggregator()
    first = TransactionContext(name="WebTransaction/first")
    second = TransactionContext(name="WebTransaction/second")

    aggregator.record(_segment(duration=0.2), first)
    aggregator.record(_segment(duration=0.6), second)
    aggregator.record(_segment(duration=0.4), second)
    (record,) = aggregator.harvest()

    assert record.count == 3
    assert record.txn_name == "WebTransaction/first"
    assert record.total_duration == pytest.approx(1.2)
    assert record.min_duration == pytest.approx(0.2)
    assert record.max_duration == pytest.approx(0.6)


def test_count_equals_number_of_qualifying_segments() -> None:
    aggregator = _aggregator(AgentConfig().with_slow_query(threshold=0.1))
    durations = [0.05, 0.1, 0.3, 0.01, 0.9, 0.2]

    for duration in durations:
        aggregator.record(_segment(duration=duration), _txn())

    assert aggregator.harvest()[0].count == sum(1 for duration in durations if duration >= 0.1)


def test_harvest_keeps_top_n_by_total_duration() -> None:
    config = AgentConfig().with_harvest(max_slow_queries=3)
    aggregator = _aggregator(config)

    for index in range(6):
        aggregator.record(
            _segment(duration=0.1 * (index + 1), collection=f"table{index}"),
            _txn(),
        )
    records = aggregator.harvest()

    assert [record.metric_name for record in records] == [
        "Datastore/statement/Postgres/table5/INSERT",
        "Datastore/statement/Postgres/table4/INSERT",
        "Datastore/statement/Postgres/table3/INSERT",
    ]


def test_tracked_signatures_are_bounded_and_evict_smallest() -> None:
    config = AgentConfig().with_harvest(max_tracked_queries=2)
    aggregator = _aggregator(config)

    aggregator.record(_segment(duration=0.3, collection="a"), _txn())
    aggregator.record(_segment(duration=0.1, collection="b"), _txn())
    assert aggregator.record(_segment(duration=0.05, collection="c"), _txn()) is False
    assert aggregator.record(_segment(duration=0.5, collection="d"), _txn()) is True

    names = {record.metric_name for record in aggregator.harvest()}
    assert names == {
        "Datastore/statement/Postgres/a/INSERT",
        "Datastore/statement/Postgres/d/INSERT",
    }


def test_harvest_resets_and_second_harvest_is_empty() -> None:
    aggregator = _aggregator()
    aggregator.record(_segment(), _txn())

    assert len(aggregator.harvest()) == 1
    assert aggregator.harvest() == []
    assert aggregator.harvest() == []


def test_missing_operation_and_collection_use_operation_metric() -> None:
    aggregator = _aggregator()
    query = "SELECT * FROM orders WHERE id = 1"

    aggregator.record(_segment(collection="", operation="", parameterized_query=query), _txn())
    (record,) = aggregator.harvest()

    assert record.metric_name == "Datastore/operation/Postgres/other"
    assert record.query == query


def test_query_inference_is_opt_in() -> None:
    aggregator = _aggregator(AgentConfig().with_datastore(infer_from_query=True))

    aggregator.record(
        _segment(collection="", operation="", parameterized_query="SELECT * FROM orders WHERE id = 1"),
        _txn(),
    )

    assert aggregator.harvest()[0].metric_name == "Datastore/statement/Postgres/orders/select"


def test_missing_query_falls_back_to_synthetic_text() -> None:
    aggregator = _aggregator()

    aggregator.record(_segment(parameterized_query="", query_parameters=None), _txn())

    assert aggregator.harvest()[0].query == "'INSERT' on 'users' using 'Postgres'"


def test_gate_provider_is_consulted_per_record() -> None:
    config = AgentConfig()
    gates = {"current": SecurityPolicyGate(config)}
    aggregator = SlowQueryAggregator(config, gate=lambda: gates["current"])

    aggregator.record(_segment(collection="before"), _txn())
    gates["current"] = SecurityPolicyGate(config, SecurityPolicies(record_sql=PolicySetting(enabled=False)))
    aggregator.record(_segment(collection="after"), _txn())

    queries = {record.metric_name: record.query for record in aggregator.harvest()}
    assert queries["Datastore/statement/Postgres/before/INSERT"] == INSERT_QUERY
    assert queries["Datastore/statement/Postgres/after/INSERT"] == "'INSERT' on 'after' using 'Postgres'"


def test_mysql_insert_with_zero_threshold() -> None:
    config = AgentConfig().with_slow_query(threshold=0.0)
    mysql = {"product": "MySQL", "host": "db.internal", "port_path_or_id": "3306"}

    policy_free = _aggregator(config)
    policy_free.record(_segment(duration=0.0, **mysql), _txn())
    restricted = _aggregator(config, SecurityPolicies(record_sql=PolicySetting(enabled=False)))
    restricted.record(_segment(duration=0.0, **mysql), _txn())

    (allowed,) = policy_free.harvest()
    (denied,) = restricted.harvest()
    assert allowed.metric_name == "Datastore/statement/MySQL/users/INSERT"
    assert allowed.query == INSERT_QUERY
    assert denied.query == "'INSERT' on 'users' using 'MySQL'"
    assert denied.params is None


def test_parameter_grid_keeps_only_valid_entries() -> None:
    aggregator = _aggregator()
    params = {
        "str": "zap",
        "int": 123,
        "invalid": object(),
        "k" * 300: 1,
        "long-key": "v" * 300,
    }

    aggregator.record(_segment(query_parameters=params), _txn())

    assert aggregator.harvest()[0].params == {"str": "zap", "int": 123, "long-key": "v" * 255}
