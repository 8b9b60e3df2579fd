"""Decides what raw SQL data may leave the process."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from .config import AgentConfig, RecordSQL


class DataClass(str, Enum):
    """Classes of sensitive data gated by policy."""

    RECORD_SQL = "record_sql"
    QUERY_PARAMETERS = "query_parameters"


class PolicyDecision(str, Enum):
    """What may be retained for a data class.

    ``REDACTED`` keeps the parameterized template (placeholders only) and
    drops literal values; ``DENY`` keeps nothing of the original text.
    """

    ALLOW_RAW = "allow_raw"
    REDACTED = "redacted"
    DENY = "deny"


class PolicySetting(BaseModel):
    """A single server-side security policy."""

    enabled: bool
    required: bool = False


class SecurityPolicies(BaseModel):
    """Security policies negotiated with the collector at connect time."""

    record_sql: PolicySetting | None = None


_LOCAL_SQL_DECISIONS: dict[RecordSQL, PolicyDecision] = {
    RecordSQL.RAW: PolicyDecision.ALLOW_RAW,
    RecordSQL.OBFUSCATED: PolicyDecision.REDACTED,
    RecordSQL.OFF: PolicyDecision.DENY,
}

_STRICTNESS: dict[PolicyDecision, int] = {
    PolicyDecision.ALLOW_RAW: 0,
    PolicyDecision.REDACTED: 1,
    PolicyDecision.DENY: 2,
}


def _stricter(first: PolicyDecision, second: PolicyDecision) -> PolicyDecision:
    return first if _STRICTNESS[first] >= _STRICTNESS[second] else second


class SecurityPolicyGate:
    """Pure combination of local config and server policy.

    Server policy, when present, always wins and can only restrict what the
    local configuration allows.
    """

    def __init__(
        self,
        config: AgentConfig,
        policies: SecurityPolicies | None = None,
        *,
        collect_traces: bool = True,
    ) -> None:
        self._config = config
        self._policies = policies or SecurityPolicies()
        self._collect_traces = collect_traces

    @property
    def policies(self) -> SecurityPolicies:
        return self._policies

    def decide(self, data_class: DataClass) -> PolicyDecision:
        if data_class is DataClass.RECORD_SQL:
            return self._decide_sql()
        if data_class is DataClass.QUERY_PARAMETERS:
            return self._decide_parameters()
        raise ValueError(f"Unknown data class '{data_class}'")

    def slow_queries_enabled(self) -> bool:
        """Whether slow query traces may be collected at all."""

        return self._config.datastore_tracer.slow_query.enabled and self._collect_traces

    def _decide_sql(self) -> PolicyDecision:
        decision = _LOCAL_SQL_DECISIONS[self._config.record_sql]
        if self._config.high_security:
            decision = _stricter(decision, PolicyDecision.REDACTED)
        server = self._policies.record_sql
        if server is None:
            return decision
        if not server.enabled:
            return PolicyDecision.DENY
        return _stricter(decision, PolicyDecision.REDACTED)

    def _decide_parameters(self) -> PolicyDecision:
        # Literal values never travel next to a template that was itself withheld.
        if not self._config.datastore_tracer.query_parameters:
            return PolicyDecision.DENY
        if self._decide_sql() is not PolicyDecision.ALLOW_RAW:
            return PolicyDecision.DENY
        return PolicyDecision.ALLOW_RAW


__all__ = [
    "DataClass",
    "PolicyDecision",
    "PolicySetting",
    "SecurityPolicies",
    "SecurityPolicyGate",
]
