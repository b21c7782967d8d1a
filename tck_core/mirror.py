"""
Mirror-node REST reader.

Eventually consistent: data written through the backend shows up here
after a lag.  This client performs exactly one GET per call; polling is
the job of :class:`tck_core.consistency.ConsistencyVerifier`.

Endpoints (``/api/v1`` prefix):
    accounts/{id}                          account data (incl. ``key``)
    accounts/{id}/nfts?token.id={token}    NFTs held by an account
    accounts/{id}/allowances/crypto        HBAR allowances
    accounts/{id}/allowances/tokens        fungible token allowances
    accounts/{id}/allowances/nfts          NFT allowances
    balances                               balance snapshot
    tokens/{id}                            token data (incl. ``custom_fees``)
    topics/{id}                            topic data
    contracts/{id}                         contract data
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from tck_core.errors import TransportError

logger = logging.getLogger("tck_mirror")

API_PREFIX = "/api/v1"


class MirrorNodeClient:
    """Thin aiohttp wrapper around the mirror REST API."""

    def __init__(
        self,
        rest_url: str,
        *,
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.rest_url = rest_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, cfg: Any, session: aiohttp.ClientSession | None = None) -> MirrorNodeClient:
        return cls(cfg.mirror.rest_url, timeout=cfg.mirror.timeout_seconds, session=session)

    async def __aenter__(self) -> MirrorNodeClient:
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

    async def fetch(
        self,
        path: str,
        params: dict[str, str] | None = None,
        *,
        missing_ok: bool = False,
    ) -> Any:
        """GET ``{rest_url}/api/v1/{path}`` and return the decoded JSON.

        With *missing_ok* a 404 (entity not indexed yet) returns None.
        """
        url = f"{self.rest_url}{API_PREFIX}/{path.lstrip('/')}"
        session = self._ensure_session()
        logger.debug("GET %s", url)
        try:
            async with session.get(
                url, params=params, timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status == 404 and missing_ok:
                    logger.debug("GET %s: not indexed yet", url)
                    return None
                if resp.status != 200:
                    raise TransportError(f"GET {url} returned HTTP {resp.status}",
                                         http_status=resp.status)
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise TransportError(f"GET {url} failed: {type(exc).__name__}: {exc}") from exc
        if not data:
            raise TransportError(f"GET {url} returned no data")
        return data

    # ---- accounts ----

    async def get_account_data(self, account_id: str, *, missing_ok: bool = False) -> dict | None:
        return await self.fetch(f"accounts/{account_id}", missing_ok=missing_ok)

    async def get_account_nfts(self, account_id: str, token_id: str) -> dict:
        return await self.fetch(f"accounts/{account_id}/nfts", {"token.id": token_id})

    async def get_hbar_allowances(self, account_id: str) -> dict:
        return await self.fetch(f"accounts/{account_id}/allowances/crypto")

    async def get_token_allowances(self, account_id: str) -> dict:
        return await self.fetch(f"accounts/{account_id}/allowances/tokens")

    async def get_nft_allowances(self, account_id: str) -> dict:
        return await self.fetch(f"accounts/{account_id}/allowances/nfts")

    async def get_balance_data(self) -> dict:
        return await self.fetch("balances")

    # ---- other entities ----

    async def get_token_data(self, token_id: str, *, missing_ok: bool = False) -> dict | None:
        return await self.fetch(f"tokens/{token_id}", missing_ok=missing_ok)

    async def get_topic_data(self, topic_id: str, *, missing_ok: bool = False) -> dict | None:
        return await self.fetch(f"topics/{topic_id}", missing_ok=missing_ok)

    async def get_contract_data(self, contract_id: str, *, missing_ok: bool = False) -> dict | None:
        return await self.fetch(f"contracts/{contract_id}", missing_ok=missing_ok)
