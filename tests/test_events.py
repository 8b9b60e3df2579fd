"""Tests for transaction event sampling."""

from __future__ import annotations

import random

from apmcore.events import EventReservoir, transaction_event
from apmcore.models import InboundCrossProcess, SyntheticsInfo, TransactionContext


def test_reservoir_keeps_capacity_and_counts_seen() -> None:
    reservoir = EventReservoir(3, rng=random.Random(7))

    for index in range(10):
        reservoir.add({"index": index})
    sample = reservoir.harvest()

    assert len(sample.events) == 3
    assert sample.seen == 10
    assert reservoir.harvest().seen == 0


def test_plain_transaction_event() -> None:
    txn = TransactionContext(name="WebTransaction/Go/hello", start=10.0)

    assert transaction_event(txn, 0.5) == {
        "type": "Transaction",
        "name": "WebTransaction/Go/hello",
        "timestamp": 10.0,
        "duration": 0.5,
    }


def test_cross_process_and_synthetics_intrinsics() -> None:
    txn = TransactionContext(
        name="t",
        guid="guid000000000000",
        path_hash="0badf00d",
        inbound=InboundCrossProcess(
            cross_process_id="1#1",
            account_id=1,
            referring_guid="ref0000000000000",
            trip_id="trip000000000000",
            path_hash="12345678",
        ),
        synthetics=SyntheticsInfo(version=1, account_id=1, resource_id="r", job_id="j", monitor_id="m"),
    )

    event = transaction_event(txn, 1.0)

    assert event["nr.guid"] == "guid000000000000"
    assert event["nr.tripId"] == "trip000000000000"
    assert event["nr.pathHash"] == "0badf00d"
    assert event["nr.referringTransactionGuid"] == "ref0000000000000"
    assert event["nr.referringPathHash"] == "12345678"
    assert event["nr.syntheticsResourceId"] == "r"
    assert event["nr.syntheticsJobId"] == "j"
    assert event["nr.syntheticsMonitorId"] == "m"


def test_distributed_trace_intrinsics() -> None:
    txn = TransactionContext(name="t", trace_id="trace", priority=0.75, sampled=True)

    event = transaction_event(txn, 1.0)

    assert (event["traceId"], event["priority"], event["sampled"]) == ("trace", 0.75, True)
