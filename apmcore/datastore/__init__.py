"""Datastore segment recording: naming, parameter capture and slow queries."""

from __future__ import annotations

from .naming import (
    DatastoreIdentity,
    datastore_metric_name,
    infer_statement,
    instance_identity,
    resolve_identity,
    synthetic_query,
)
from .params import ParameterValidation, validate_parameters
from .slow_queries import (
    SlowQueryAggregator,
    SlowQueryRecord,
    decode_params_blob,
    encode_params_blob,
    rank_slow_queries,
)

__all__ = [
    "DatastoreIdentity",
    "ParameterValidation",
    "SlowQueryAggregator",
    "SlowQueryRecord",
    "datastore_metric_name",
    "decode_params_blob",
    "encode_params_blob",
    "infer_statement",
    "instance_identity",
    "rank_slow_queries",
    "resolve_identity",
    "synthetic_query",
    "validate_parameters",
]
