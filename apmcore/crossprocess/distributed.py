"""Distributed trace payload carried in the ``newrelic`` header."""

from __future__ import annotations

import base64
import binascii
import json
import math
import time
from dataclasses import dataclass
from typing import Any

from ..errors import HeaderDecodeError, UntrustedAccountError
from ..models import TransactionContext, new_guid
from ..session import TrustConfiguration

DISTRIBUTED_TRACE_HEADER = "newrelic"
PAYLOAD_VERSION = (0, 1)
CALLER_TYPE = "App"

_REQUIRED_KEYS = ("ty", "ac", "ap", "tr", "ti")


@dataclass(frozen=True, slots=True)
class DistributedTracePayload:
    """Fields propagated from the calling service."""

    caller_type: str
    account_id: str
    app_id: str
    trace_id: str
    timestamp_ms: int
    transaction_id: str = ""
    span_id: str = ""
    priority: float | None = None
    sampled: bool | None = None
    trust_key: str = ""

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ty": self.caller_type,
            "ac": self.account_id,
            "ap": self.app_id,
            "tr": self.trace_id,
            "ti": self.timestamp_ms,
        }
        if self.transaction_id:
            data["tx"] = self.transaction_id
        if self.span_id:
            data["id"] = self.span_id
        if self.priority is not None:
            data["pr"] = self.priority
        if self.sampled is not None:
            data["sa"] = self.sampled
        if self.trust_key and self.trust_key != self.account_id:
            data["tk"] = self.trust_key
        return {"v": list(PAYLOAD_VERSION), "d": data}


def create_payload(
    txn: TransactionContext,
    trust: TrustConfiguration,
    *,
    span_id: str = "",
    now: float | None = None,
) -> DistributedTracePayload:
    """Payload describing ``txn`` as the caller of an outbound request."""

    if not txn.trace_id:
        txn.trace_id = txn.guid
    return DistributedTracePayload(
        caller_type=CALLER_TYPE,
        account_id=trust.account_id,
        app_id=trust.primary_application_id,
        trace_id=txn.trace_id,
        timestamp_ms=int((time.time() if now is None else now) * 1000),
        transaction_id=txn.guid,
        span_id=span_id,
        priority=txn.priority,
        sampled=txn.sampled,
        trust_key=trust.trusted_account_key,
    )


def encode_payload(payload: DistributedTracePayload) -> str:
    text = json.dumps(payload.to_json(), separators=(",", ":"))
    return base64.standard_b64encode(text.encode("utf-8")).decode("ascii")


def _refuse_constant(name: str) -> Any:
    raise HeaderDecodeError(f"Payload contains non-finite number {name}")


def load_header_json(text: str) -> Any:
    """Decode header JSON, refusing non-finite numbers; raises ``HeaderDecodeError``."""

    try:
        return json.loads(text, parse_constant=_refuse_constant)
    except (ValueError, RecursionError) as exc:
        raise HeaderDecodeError(f"Payload is not JSON: {exc}") from exc


def _text(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise HeaderDecodeError(f"Distributed trace field {key} is not a string")


def _priority(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        priority = float(value)
    except OverflowError:
        return None
    return priority if math.isfinite(priority) else None


def parse_payload(value: str) -> DistributedTracePayload:
    """Parse a raw or base64 payload; raises ``HeaderDecodeError``."""

    text = value.strip()
    if not text:
        raise HeaderDecodeError("Empty distributed trace payload")
    if not text.startswith("{"):
        try:
            text = base64.b64decode(text, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise HeaderDecodeError(f"Distributed trace payload is not base64: {exc}") from exc
    document = load_header_json(text)
    if not isinstance(document, dict):
        raise HeaderDecodeError("Distributed trace payload is not an object")

    version = document.get("v")
    if not isinstance(version, list) or not version or not isinstance(version[0], int):
        raise HeaderDecodeError("Distributed trace payload has no version")
    if version[0] > PAYLOAD_VERSION[0]:
        raise HeaderDecodeError(f"Unsupported distributed trace major version {version[0]}")

    data = document.get("d")
    if not isinstance(data, dict):
        raise HeaderDecodeError("Distributed trace payload has no data")
    missing = [key for key in _REQUIRED_KEYS if key not in data]
    if missing:
        raise HeaderDecodeError(f"Distributed trace payload missing {', '.join(missing)}")
    if "tx" not in data and "id" not in data:
        raise HeaderDecodeError("Distributed trace payload has neither tx nor id")

    priority = data.get("pr")
    sampled = data.get("sa")
    try:
        timestamp_ms = int(data["ti"])
    except (TypeError, ValueError, OverflowError) as exc:
        raise HeaderDecodeError("Distributed trace timestamp is not an integer") from exc
    account_id = _text(data, "ac")
    return DistributedTracePayload(
        caller_type=_text(data, "ty"),
        account_id=account_id,
        app_id=_text(data, "ap"),
        trace_id=_text(data, "tr"),
        timestamp_ms=timestamp_ms,
        transaction_id=_text(data, "tx"),
        span_id=_text(data, "id"),
        priority=_priority(priority),
        sampled=sampled if isinstance(sampled, bool) else None,
        trust_key=_text(data, "tk") or account_id,
    )


def accept_payload(value: str, trust: TrustConfiguration) -> DistributedTracePayload:
    """Parse and trust-check an inbound payload; raises on failure."""

    payload = parse_payload(value)
    if not trust.trusted_account_key or payload.trust_key != trust.trusted_account_key:
        raise UntrustedAccountError(f"Trust key {payload.trust_key} is not trusted")
    return payload


def apply_payload(txn: TransactionContext, payload: DistributedTracePayload) -> None:
    """Continue the caller's trace in ``txn``."""

    txn.trace_id = payload.trace_id
    txn.parent_span_id = payload.span_id
    if payload.priority is not None:
        txn.priority = payload.priority
    if payload.sampled is not None:
        txn.sampled = payload.sampled


def new_span_id() -> str:
    return new_guid()


__all__ = [
    "DISTRIBUTED_TRACE_HEADER",
    "DistributedTracePayload",
    "accept_payload",
    "apply_payload",
    "create_payload",
    "encode_payload",
    "load_header_json",
    "new_span_id",
    "parse_payload",
]
