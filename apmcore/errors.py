"""Exception types raised by the lower-level helpers."""

from __future__ import annotations


class ApmError(RuntimeError):
    """Base error for agent core failures."""


class ObfuscationError(ApmError):
    """Raised when a header value cannot be obfuscated or restored."""


class HeaderDecodeError(ApmError):
    """Raised when a cross-process payload is malformed."""


class UntrustedAccountError(HeaderDecodeError):
    """Raised when a payload names an account outside the trusted set."""


class CodeLocationError(ApmError):
    """Raised when a code location cannot be derived from a callable."""


__all__ = [
    "ApmError",
    "CodeLocationError",
    "HeaderDecodeError",
    "ObfuscationError",
    "UntrustedAccountError",
]
