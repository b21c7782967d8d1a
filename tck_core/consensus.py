"""
Consensus-side entity queries.

The consensus reader reflects state immediately after a write is
finalised.  Scenario code depends on the :class:`ConsensusReader`
protocol; :class:`RpcConsensusReader` answers it through the backend's
JSON-RPC query methods.  Entity info comes back as the backend's JSON
(camelCase keys; keys as hex strings: DER for single keys, bare
``KeyList`` / ``ThresholdKey`` protobuf for composite keys).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from tck_core.context import ScenarioContext
    from tck_core.gateway import RequestGateway


class ConsensusReader(Protocol):
    async def get_account_info(self, account_id: str, ctx: ScenarioContext | None = None) -> dict: ...

    async def get_token_info(self, token_id: str, ctx: ScenarioContext | None = None) -> dict: ...

    async def get_topic_info(self, topic_id: str, ctx: ScenarioContext | None = None) -> dict: ...

    async def get_contract_info(self, contract_id: str, ctx: ScenarioContext | None = None) -> dict: ...


class RpcConsensusReader:
    """:class:`ConsensusReader` backed by the JSON-RPC gateway."""

    def __init__(self, gateway: RequestGateway):
        self.gateway = gateway

    async def get_account_info(self, account_id: str, ctx: ScenarioContext | None = None) -> dict:
        return await self.gateway.call("getAccountInfo", {"accountId": account_id}, ctx)

    async def get_token_info(self, token_id: str, ctx: ScenarioContext | None = None) -> dict:
        return await self.gateway.call("getTokenInfo", {"tokenId": token_id}, ctx)

    async def get_topic_info(self, topic_id: str, ctx: ScenarioContext | None = None) -> dict:
        return await self.gateway.call("getTopicInfo", {"topicId": topic_id}, ctx)

    async def get_contract_info(self, contract_id: str, ctx: ScenarioContext | None = None) -> dict:
        return await self.gateway.call("getContractInfo", {"contractId": contract_id}, ctx)
