"""Cross-application tracing headers: encoding, decoding and trust checks."""

from __future__ import annotations

import hashlib
import json
import logging
import math
from typing import Callable, Mapping

from ..errors import HeaderDecodeError, ObfuscationError, UntrustedAccountError
from ..models import AppData, InboundCrossProcess, SyntheticsInfo, TransactionContext
from ..session import AgentSession, TrustConfiguration
from .distributed import (
    DISTRIBUTED_TRACE_HEADER,
    accept_payload,
    apply_payload,
    create_payload,
    encode_payload,
    load_header_json,
    new_span_id,
)
from .obfuscation import deobfuscate, obfuscate

LOG = logging.getLogger(__name__)

ID_HEADER = "X-NewRelic-ID"
TRANSACTION_HEADER = "X-NewRelic-Transaction"
APP_DATA_HEADER = "X-NewRelic-App-Data"
SYNTHETICS_HEADER = "X-NewRelic-Synthetics"

SYNTHETICS_VERSION = 1

TrustProvider = Callable[[], TrustConfiguration | None]


def parse_account_id(cross_process_id: str) -> int:
    """Numeric account prefix of an ``account#application`` identifier."""

    account, sep, application = cross_process_id.partition("#")
    if not sep or not account or not application:
        raise HeaderDecodeError(f"Malformed cross process id '{cross_process_id}'")
    try:
        return int(account)
    except ValueError as exc:
        raise HeaderDecodeError(f"Non-numeric account in '{cross_process_id}'") from exc


def calculate_path_hash(referring_path_hash: str | None, txn_name: str, app_name: str) -> str:
    """Chain the caller's path hash with this application's transaction."""

    referring = 0
    if referring_path_hash:
        try:
            referring = int(referring_path_hash, 16) & 0xFFFFFFFF
        except ValueError:
            referring = 0
        referring = ((referring << 1) | (referring >> 31)) & 0xFFFFFFFF
    digest = hashlib.md5(f"{app_name};{txn_name}".encode("utf-8")).digest()
    low32 = int.from_bytes(digest[12:16], "big")
    return f"{referring ^ low32:08x}"


def header_value(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup."""

    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return ""


class CrossProcessCodec:
    """Builds and validates the headers exchanged with cooperating services.

    Decoding never raises: a malformed, foreign-keyed or untrusted payload is
    treated as absent.
    """

    def __init__(
        self,
        trust: TrustProvider,
        app_name: str,
        *,
        enabled: bool = True,
        distributed: bool = True,
    ) -> None:
        self._trust = trust
        self._app_name = app_name
        self._enabled = enabled
        self._distributed = distributed

    @classmethod
    def for_session(cls, session: AgentSession) -> CrossProcessCodec:
        """Codec that follows ``session``'s trust across reconnects."""

        config = session.config
        return cls(
            lambda: session.trust,
            config.app_name,
            enabled=config.cross_application_tracer,
            distributed=config.distributed_tracer,
        )

    def distributed_trace_headers(self, txn: TransactionContext, *, span_id: str = "") -> dict[str, str]:
        """``newrelic`` header continuing ``txn``'s trace downstream."""

        trust = self._trust() if self._distributed else None
        if trust is None or not trust.account_id:
            return {}
        payload = create_payload(txn, trust, span_id=span_id or new_span_id())
        return {DISTRIBUTED_TRACE_HEADER: encode_payload(payload)}

    def accept_distributed_trace(self, txn: TransactionContext, headers: Mapping[str, str]) -> bool:
        """Continue an upstream trace in ``txn`` when its payload is trusted."""

        trust = self._trust() if self._distributed else None
        value = header_value(headers, DISTRIBUTED_TRACE_HEADER)
        if trust is None or not value:
            return False
        try:
            payload = accept_payload(value, trust)
        except HeaderDecodeError as exc:
            LOG.debug("Ignoring inbound distributed trace header", extra={"reason": str(exc)})
            return False
        apply_payload(txn, payload)
        return True

    def outbound_request_headers(self, txn: TransactionContext, *, app_name: str | None = None) -> dict[str, str]:
        """Headers to inject into an outbound request made by ``txn``."""

        trust = self._usable_trust()
        if trust is None:
            return {}
        txn.path_hash = calculate_path_hash(txn.referring_path_hash, txn.name, app_name or self._app_name)
        transaction = json.dumps([txn.guid, False, txn.trip_id, txn.path_hash], separators=(",", ":"))
        headers = {
            ID_HEADER: obfuscate(trust.cross_process_id, trust.encoding_key),
            TRANSACTION_HEADER: obfuscate(transaction, trust.encoding_key),
        }
        if txn.synthetics is not None and txn.synthetics.encoded:
            headers[SYNTHETICS_HEADER] = txn.synthetics.encoded
        return headers

    def handle_inbound_request(self, headers: Mapping[str, str]) -> InboundCrossProcess | None:
        """Decode the caller's ID and transaction headers, if trusted."""

        trust = self._usable_trust()
        encoded_id = header_value(headers, ID_HEADER)
        if trust is None or not encoded_id:
            return None
        try:
            return self._decode_inbound(encoded_id, header_value(headers, TRANSACTION_HEADER), trust)
        except (HeaderDecodeError, ObfuscationError) as exc:
            LOG.debug("Ignoring inbound cross process headers", extra={"reason": str(exc)})
            return None

    def handle_inbound_synthetics(self, value: str) -> SyntheticsInfo | None:
        """Decode a synthetics monitor header, if trusted."""

        trust = self._usable_trust()
        if trust is None or not value:
            return None
        try:
            return self._decode_synthetics(value, trust)
        except (HeaderDecodeError, ObfuscationError) as exc:
            LOG.debug("Ignoring inbound synthetics header", extra={"reason": str(exc)})
            return None

    def accept_inbound(self, txn: TransactionContext, headers: Mapping[str, str]) -> None:
        """Attach whatever trusted context the inbound headers carry to ``txn``."""

        txn.inbound = self.handle_inbound_request(headers)
        txn.synthetics = self.handle_inbound_synthetics(header_value(headers, SYNTHETICS_HEADER))

    def encode_app_data(
        self,
        txn: TransactionContext,
        *,
        queue_time: float,
        response_time: float,
        content_length: int = -1,
    ) -> dict[str, str]:
        """Response header describing how this application served ``txn``."""

        trust = self._usable_trust()
        if trust is None:
            return {}
        payload = [
            trust.cross_process_id,
            txn.name,
            queue_time,
            response_time,
            content_length,
            txn.guid,
            False,
        ]
        return {APP_DATA_HEADER: obfuscate(json.dumps(payload, separators=(",", ":")), trust.encoding_key)}

    def decode_app_data(self, value: str) -> AppData | None:
        """Decode a downstream service's response header, if trusted."""

        trust = self._usable_trust()
        if trust is None or not value:
            return None
        try:
            return self._decode_app_data(value, trust)
        except (HeaderDecodeError, ObfuscationError) as exc:
            LOG.debug("Ignoring inbound app data header", extra={"reason": str(exc)})
            return None

    def _usable_trust(self) -> TrustConfiguration | None:
        if not self._enabled:
            return None
        trust = self._trust()
        if trust is None or not trust.encoding_key or not trust.cross_process_id:
            return None
        return trust

    def _decode_inbound(self, encoded_id: str, encoded_txn: str, trust: TrustConfiguration) -> InboundCrossProcess:
        cross_process_id = deobfuscate(encoded_id, trust.encoding_key)
        account_id = _require_trusted(cross_process_id, trust)
        if not encoded_txn:
            return InboundCrossProcess(cross_process_id=cross_process_id, account_id=account_id)
        fields = _load_array(deobfuscate(encoded_txn, trust.encoding_key), minimum=1)
        referring_guid = _string(fields, 0)
        record_trace = bool(fields[1]) if len(fields) > 1 and isinstance(fields[1], bool) else False
        trip_id = _string(fields, 2) if len(fields) > 2 else ""
        path_hash = _string(fields, 3) if len(fields) > 3 else ""
        return InboundCrossProcess(
            cross_process_id=cross_process_id,
            account_id=account_id,
            referring_guid=referring_guid,
            trip_id=trip_id,
            path_hash=path_hash,
            record_trace=record_trace,
        )

    def _decode_app_data(self, value: str, trust: TrustConfiguration) -> AppData:
        fields = _load_array(deobfuscate(value, trust.encoding_key), minimum=6)
        cross_process_id = _string(fields, 0)
        _require_trusted(cross_process_id, trust)
        return AppData(
            cross_process_id=cross_process_id,
            transaction_name=_string(fields, 1),
            queue_time=_number(fields, 2),
            response_time=_number(fields, 3),
            content_length=int(_number(fields, 4)),
            guid=_string(fields, 5),
            record_trace=len(fields) > 6 and fields[6] is True,
        )

    def _decode_synthetics(self, value: str, trust: TrustConfiguration) -> SyntheticsInfo:
        fields = _load_array(deobfuscate(value, trust.encoding_key), minimum=5)
        version = fields[0]
        if not isinstance(version, int) or isinstance(version, bool) or version != SYNTHETICS_VERSION:
            raise HeaderDecodeError(f"Unsupported synthetics version {version!r}")
        account_id = fields[1]
        if not isinstance(account_id, int) or isinstance(account_id, bool):
            raise HeaderDecodeError("Synthetics account id is not an integer")
        if not trust.is_trusted(account_id):
            raise UntrustedAccountError(f"Synthetics account {account_id} is not trusted")
        return SyntheticsInfo(
            version=version,
            account_id=account_id,
            resource_id=_string(fields, 2),
            job_id=_string(fields, 3),
            monitor_id=_string(fields, 4),
            encoded=value,
        )


def _require_trusted(cross_process_id: str, trust: TrustConfiguration) -> int:
    account_id = parse_account_id(cross_process_id)
    if not trust.is_trusted(account_id):
        raise UntrustedAccountError(f"Account {account_id} is not trusted")
    return account_id


def _load_array(plaintext: str, *, minimum: int) -> list[object]:
    fields = load_header_json(plaintext)
    if not isinstance(fields, list) or len(fields) < minimum:
        raise HeaderDecodeError("Payload is not an array of the expected size")
    return fields


def _string(fields: list[object], index: int) -> str:
    value = fields[index]
    if not isinstance(value, str):
        raise HeaderDecodeError(f"Field {index} is not a string")
    return value


def _number(fields: list[object], index: int) -> float:
    value = fields[index]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise HeaderDecodeError(f"Field {index} is not a number")
    try:
        number = float(value)
    except OverflowError as exc:
        raise HeaderDecodeError(f"Field {index} is out of range") from exc
    if not math.isfinite(number):
        raise HeaderDecodeError(f"Field {index} is not finite")
    return number


__all__ = [
    "APP_DATA_HEADER",
    "CrossProcessCodec",
    "ID_HEADER",
    "SYNTHETICS_HEADER",
    "TRANSACTION_HEADER",
    "calculate_path_hash",
    "header_value",
    "parse_account_id",
]
