"""Collector connection state: trust configuration and negotiated policy."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from pydantic import BaseModel, Field

from .config import AgentConfig
from .security import SecurityPolicies, SecurityPolicyGate

LOG = logging.getLogger(__name__)

SessionListener = Callable[["SessionState"], None]


class ConnectReply(BaseModel):
    """Subset of the collector handshake reply the core depends on."""

    cross_process_id: str = ""
    encoding_key: str = ""
    trusted_account_ids: list[int] = Field(default_factory=list)
    trusted_account_key: str = ""
    account_id: str = ""
    primary_application_id: str = ""
    collect_traces: bool = True
    security_policies: SecurityPolicies | None = None


@dataclass(frozen=True, slots=True)
class TrustConfiguration:
    """Process-wide trust settings valid for one collector connection."""

    cross_process_id: str
    encoding_key: str
    trusted_account_ids: frozenset[int] = frozenset()
    trusted_account_key: str = ""
    account_id: str = ""
    primary_application_id: str = ""

    @classmethod
    def from_reply(cls, reply: ConnectReply) -> TrustConfiguration:
        return cls(
            cross_process_id=reply.cross_process_id,
            encoding_key=reply.encoding_key,
            trusted_account_ids=frozenset(reply.trusted_account_ids),
            trusted_account_key=reply.trusted_account_key or reply.account_id,
            account_id=reply.account_id,
            primary_application_id=reply.primary_application_id,
        )

    def is_trusted(self, account_id: int) -> bool:
        return account_id in self.trusted_account_ids


@dataclass(frozen=True, slots=True)
class SessionState:
    """Immutable snapshot of the current collector connection."""

    connected: bool
    gate: SecurityPolicyGate
    trust: TrustConfiguration | None = None
    reply: ConnectReply | None = None
    connected_at: datetime | None = None


class AgentSession:
    """Owns the connection state and replaces it wholesale on reconnect.

    Readers take the ``state`` reference without locking; only ``reconnect``
    and ``disconnect`` serialize on the write lock.
    """

    def __init__(self, config: AgentConfig) -> None:
        self._config = config
        self._lock = threading.Lock()
        self._listeners: set[SessionListener] = set()
        self._state = self._disconnected_state()

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def state(self) -> SessionState:
        """Current connection snapshot."""

        return self._state

    @property
    def trust(self) -> TrustConfiguration | None:
        return self._state.trust

    @property
    def gate(self) -> SecurityPolicyGate:
        return self._state.gate

    def reconnect(self, reply: ConnectReply | Mapping[str, Any]) -> SessionState:
        """Install the trust configuration and policies from a handshake reply."""

        if not isinstance(reply, ConnectReply):
            reply = ConnectReply.model_validate(reply)
        state = SessionState(
            connected=True,
            gate=SecurityPolicyGate(
                self._config,
                reply.security_policies,
                collect_traces=reply.collect_traces,
            ),
            trust=TrustConfiguration.from_reply(reply),
            reply=reply,
            connected_at=datetime.now(tz=timezone.utc),
        )
        with self._lock:
            self._state = state
        LOG.debug(
            "Collector session established",
            extra={"cross_process_id": reply.cross_process_id, "trusted_accounts": len(reply.trusted_account_ids)},
        )
        self._notify(state)
        return state

    def disconnect(self) -> None:
        """Drop trust and server policy, reverting to local-only decisions."""

        state = self._disconnected_state()
        with self._lock:
            self._state = state
        self._notify(state)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to session updates; returns an unsubscribe handle."""

        self._listeners.add(listener)
        if self._state.connected:
            listener(self._state)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def _disconnected_state(self) -> SessionState:
        return SessionState(connected=False, gate=SecurityPolicyGate(self._config))

    def _notify(self, state: SessionState) -> None:
        for listener in tuple(self._listeners):
            listener(state)


__all__ = [
    "AgentSession",
    "ConnectReply",
    "SessionListener",
    "SessionState",
    "TrustConfiguration",
]
