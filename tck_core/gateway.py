"""
JSON-RPC 2.0 request gateway for the TCK backend.

Built on ``aiohttp``.  One :class:`RequestGateway` owns one correlation-id
counter; every call is stamped with the next id before it is sent and the
response must echo that id back.

Error classification
--------------------
- ``error.code == -32601``           -> :class:`MethodNotImplemented` (skip)
- ``result == {"error": "NOT_IMPLEMENTED"}`` -> :class:`MethodNotImplemented`
- any other ``error`` object          -> :class:`RpcError` with ``status``
                                         taken from ``error.data.status``
- non-2xx without a JSON-RPC error,
  unreadable body, id mismatch,
  connection failure, timeout         -> :class:`TransportError`

Nothing is retried here.  Writes are attempted exactly once; polling of
eventually-consistent reads belongs to :mod:`tck_core.consistency`.

Usage:
    async with RequestGateway("http://localhost:8544") as gw:
        key = await gw.call("generateKey", {"type": "ed25519PrivateKey"})
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any

import aiohttp

from tck_core.context import ScenarioContext, label_of
from tck_core.errors import (
    ErrorCode,
    MethodNotImplemented,
    RpcError,
    TransportError,
)

logger = logging.getLogger("tck_gateway")

JSONRPC_VERSION = "2.0"
NOT_IMPLEMENTED_RESULT = "NOT_IMPLEMENTED"


# ═══════════════════════════════════════════════════════════════════
#  Request / response helpers
# ═══════════════════════════════════════════════════════════════════

def build_request(
    request_id: int,
    method: str,
    params: dict | None = None,
    ctx: ScenarioContext | None = None,
) -> dict[str, Any]:
    """Build a JSON-RPC request object."""
    payload: dict[str, Any] = {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "method": method,
    }
    if ctx is not None and ctx.session_id:
        params = {**(params or {}), "sessionId": ctx.session_id}
    if params is not None:
        payload["params"] = params
    return payload


def parse_response(
    method: str,
    request_id: int,
    body: Any,
    http_status: int = 200,
) -> Any:
    """
    Classify a decoded JSON-RPC response body.

    Returns the ``result`` member on success, raises one of the harness
    errors otherwise.
    """
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and "code" in error:
        # id is null when the server could not read the request id
        if body.get("id") not in (None, request_id):
            raise TransportError(
                f"error response id {body.get('id')!r} does not match request id {request_id}",
                method=method,
            )
        code = error.get("code")
        message = error.get("message")
        if code == ErrorCode.METHOD_NOT_FOUND:
            raise MethodNotImplemented(method, message)
        data = error.get("data")
        status = data.get("status") if isinstance(data, dict) else None
        raise RpcError(code, message=message, status=status, data=data, method=method)

    if not 200 <= http_status < 300:
        raise TransportError(
            f"HTTP {http_status} without a JSON-RPC error body",
            method=method,
            http_status=http_status,
        )
    if not isinstance(body, dict) or body.get("jsonrpc") != JSONRPC_VERSION:
        raise TransportError("malformed JSON-RPC response", method=method)
    if body.get("id") != request_id:
        raise TransportError(
            f"response id {body.get('id')!r} does not match request id {request_id}",
            method=method,
        )
    if "result" not in body:
        raise TransportError("response carries neither result nor error", method=method)

    result = body["result"]
    if isinstance(result, dict) and result.get("error") == NOT_IMPLEMENTED_RESULT:
        raise MethodNotImplemented(method)
    return result


# ═══════════════════════════════════════════════════════════════════
#  Gateway
# ═══════════════════════════════════════════════════════════════════

class RequestGateway:
    """Serialises method calls into JSON-RPC requests over HTTP POST."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count()
        self.calls_made: int = 0

    @classmethod
    def from_config(cls, cfg: Any, session: aiohttp.ClientSession | None = None) -> RequestGateway:
        return cls(cfg.rpc.url, timeout=cfg.rpc.timeout_seconds, session=session)

    async def __aenter__(self) -> RequestGateway:
        self._ensure_session()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def next_id(self) -> int:
        return next(self._ids)

    async def call(
        self,
        method: str,
        params: dict | None = None,
        ctx: ScenarioContext | None = None,
    ) -> Any:
        """Invoke *method* on the backend and return its ``result``."""
        request_id = self.next_id()
        payload = build_request(request_id, method, params, ctx)
        session = self._ensure_session()
        self.calls_made += 1
        logger.debug("[%s] -> %s id=%d", label_of(ctx), method, request_id)

        try:
            async with session.post(
                self.url,
                data=json.dumps(payload),
                headers={"Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                http_status = resp.status
                raw = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}", method=method) from exc

        try:
            text = raw.decode("utf-8")
            body = json.loads(text) if text else None
        except (UnicodeDecodeError, json.JSONDecodeError):
            body = None
            if 200 <= http_status < 300:
                raise TransportError("response body is not valid JSON", method=method,
                                     http_status=http_status)

        try:
            result = parse_response(method, request_id, body, http_status)
        except MethodNotImplemented:
            logger.warning("[%s] Method %s not found.", label_of(ctx), method)
            raise
        except RpcError as exc:
            logger.debug("[%s] <- %s id=%d error %s", label_of(ctx), method,
                         request_id, exc.status or exc.code)
            raise
        logger.debug("[%s] <- %s id=%d ok", label_of(ctx), method, request_id)
        return result


# ═══════════════════════════════════════════════════════════════════
#  Session helpers
# ═══════════════════════════════════════════════════════════════════

async def setup_operator(
    gateway: RequestGateway,
    account_id: str,
    private_key: str,
    *,
    node_ip: str | None = None,
    node_account_id: str | None = None,
    mirror_network_ip: str | None = None,
    ctx: ScenarioContext | None = None,
) -> Any:
    """Set the funding / fee-paying operator for the backend session."""
    params: dict[str, Any] = {
        "operatorAccountId": account_id,
        "operatorPrivateKey": private_key,
    }
    if node_ip is not None:
        params["nodeIp"] = node_ip
    if node_account_id is not None:
        params["nodeAccountId"] = node_account_id
    if mirror_network_ip is not None:
        params["mirrorNetworkIp"] = mirror_network_ip
    return await gateway.call("setup", params, ctx)


async def reset(gateway: RequestGateway, ctx: ScenarioContext | None = None) -> Any:
    """Drop the backend's per-session client state."""
    return await gateway.call("reset", None, ctx)
