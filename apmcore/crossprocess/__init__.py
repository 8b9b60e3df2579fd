"""Cross-process header codec and obfuscation helpers."""

from __future__ import annotations

from .cat import (
    APP_DATA_HEADER,
    ID_HEADER,
    SYNTHETICS_HEADER,
    TRANSACTION_HEADER,
    CrossProcessCodec,
    calculate_path_hash,
    parse_account_id,
)
from .distributed import (
    DISTRIBUTED_TRACE_HEADER,
    DistributedTracePayload,
    encode_payload,
    parse_payload,
)
from .obfuscation import deobfuscate, obfuscate

__all__ = [
    "APP_DATA_HEADER",
    "CrossProcessCodec",
    "DISTRIBUTED_TRACE_HEADER",
    "DistributedTracePayload",
    "ID_HEADER",
    "SYNTHETICS_HEADER",
    "TRANSACTION_HEADER",
    "calculate_path_hash",
    "deobfuscate",
    "encode_payload",
    "obfuscate",
    "parse_account_id",
    "parse_payload",
]
