"""
Error taxonomy for the TCK harness.

Every failure the harness core can surface is a :class:`HarnessError`:

  - **TransportError**       – no structured JSON-RPC response was received
  - **RpcError**             – the backend rejected the call; ``status``
                               carries the domain status string the scenario
                               asserts on (e.g. ``INVALID_SIGNATURE``)
  - **MethodNotImplemented** – the backend build does not support the method;
                               a soft-skip signal, never a failure
  - **KeyDecodeError**       – malformed or unrecognised key encoding
  - **ConsistencyTimeout**   – the lagging source never agreed with the
                               consensus source within the attempt budget

``MethodNotImplemented`` is intentionally *not* an ``RpcError`` so that
``except RpcError`` in a scenario can never swallow a skip.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Optional

__all__ = [
    "ErrorCode",
    "HarnessError",
    "TransportError",
    "RpcError",
    "MethodNotImplemented",
    "KeyDecodeError",
    "ConsistencyTimeout",
]


class ErrorCode(IntEnum):
    """Reserved JSON-RPC 2.0 error codes."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


class HarnessError(Exception):
    """Base class for all harness errors."""


class TransportError(HarnessError):
    """No structured JSON-RPC response could be obtained."""

    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, *, method: str | None = None,
                 http_status: int | None = None):
        self.message = message
        self.method = method
        self.http_status = http_status
        prefix = f"{method}: " if method else ""
        super().__init__(f"{prefix}{message}")


class RpcError(HarnessError):
    """Application-level JSON-RPC error returned by the backend."""

    def __init__(
        self,
        code: int,
        message: Optional[str] = None,
        status: Optional[str] = None,
        data: Any = None,
        method: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status = status
        self.data = data
        self.method = method

        full_msg = f"[{code}] {message or 'JSON-RPC error'}"
        if status:
            full_msg += f" (status={status})"
        if method:
            full_msg = f"{method}: {full_msg}"
        super().__init__(full_msg)

    @property
    def is_internal(self) -> bool:
        return self.code == ErrorCode.INTERNAL_ERROR


class MethodNotImplemented(HarnessError):
    """The backend build does not implement *method*."""

    def __init__(self, method: str, message: str | None = None):
        self.method = method
        self.message = message
        super().__init__(f"Method {method!r} not implemented by backend"
                         + (f": {message}" if message else ""))


class KeyDecodeError(HarnessError, ValueError):
    """A key encoding could not be decoded."""


class ConsistencyTimeout(HarnessError):
    """A consistency check never converged.

    ``last_a`` / ``last_b`` hold the final values observed from the
    consensus-side and mirror-side probes.
    """

    def __init__(self, description: str, attempts: int, last_a: Any, last_b: Any):
        self.description = description
        self.attempts = attempts
        self.last_a = last_a
        self.last_b = last_b
        label = description or "consistency check"
        super().__init__(
            f"{label} did not converge after {attempts} attempts: "
            f"consensus={last_a!r} mirror={last_b!r}"
        )
