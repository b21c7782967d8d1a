"""
Shared pytest fixtures for the tck-harness test suite.

``network`` is an in-process fake of the two sources the harness talks to:
a JSON-RPC SDK backend (consensus reads answer immediately) and a mirror
REST API that serves each write only after ``mirror_lag`` stale reads.
"""

import copy

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from tck_core.config import TCKConfig
from tck_core.crypto_keys import (
    evm_address_from_key,
    generate_private_key,
    public_key_from_private,
)
from tck_core.key_codec import to_raw_view, unwrap_key_container
from tck_core.keys import KeyAlgorithm

pytest_plugins = ["pytester", "tck_core.pytest_plugin"]

_PRIVATE_TYPES = {
    "ed25519PrivateKey": KeyAlgorithm.ED25519,
    "ecdsaSecp256k1PrivateKey": KeyAlgorithm.ECDSA_SECP256K1,
}
_PUBLIC_TYPES = {
    "ed25519PublicKey": KeyAlgorithm.ED25519,
    "ecdsaSecp256k1PublicKey": KeyAlgorithm.ECDSA_SECP256K1,
}


class RpcFault(Exception):
    def __init__(self, code, message, status=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status


def consensus_key(key_hex):
    """Consensus reports composite keys without the outer ``Key`` wrapper."""
    if key_hex is None or not to_raw_view(key_hex).is_composite:
        return key_hex
    return unwrap_key_container(key_hex)


def mirror_key(key_hex):
    if key_hex is None:
        return None
    view = to_raw_view(key_hex)
    if view.is_composite:
        return {"_type": "ProtobufEncoded", "key": key_hex}
    return {"_type": view.kind.value, "key": view.hex()}


def mirror_fees(custom_fees):
    out = {"fixed_fees": [], "fractional_fees": [], "royalty_fees": []}
    for fee in custom_fees:
        common = {
            "collector_account_id": fee["feeCollectorAccountId"],
            "all_collectors_are_exempt": fee.get("feeCollectorsExempt", False),
        }
        if "fixedFee" in fee:
            fixed = fee["fixedFee"]
            out["fixed_fees"].append({
                **common,
                "amount": int(fixed["amount"]),
                "denominating_token_id": fixed.get("denominatingTokenId"),
            })
        elif "fractionalFee" in fee:
            frac = fee["fractionalFee"]
            out["fractional_fees"].append({
                **common,
                "amount": {"numerator": int(frac["numerator"]),
                           "denominator": int(frac["denominator"])},
                "minimum": int(frac.get("minimumAmount", 0)),
                "maximum": int(frac.get("maximumAmount", 0)),
                "net_of_transfers": frac.get("assessmentMethod") == "exclusive",
                "denominating_token_id": None,
            })
        else:
            royalty = fee["royaltyFee"]
            fallback = royalty.get("fallbackFee")
            out["royalty_fees"].append({
                **common,
                "amount": {"numerator": int(royalty["numerator"]),
                           "denominator": int(royalty["denominator"])},
                "fallback_fee": None if fallback is None else {
                    "amount": int(fallback["amount"]),
                    "denominating_token_id": fallback.get("denominatingTokenId"),
                },
            })
    return out


class FakeNetwork:
    """Fake SDK backend plus a lagging mirror over the same entity store."""

    def __init__(self, mirror_lag=2):
        self.mirror_lag = mirror_lag
        self.requests = []
        self.entities = {}      # (kind, id) -> consensus state
        self._mirror = {}       # (kind, id) -> state visible to the mirror
        self._pending = {}      # (kind, id) -> [stale reads left, state]
        self.mirror_reads = 0
        self._next_num = 1000
        self.methods = {
            "setup": self._setup,
            "reset": self._reset,
            "generateKey": self._generate_key,
            "createAccount": self._create_account,
            "updateAccount": self._update_account,
            "getAccountInfo": self._get_account_info,
            "createToken": self._create_token,
            "getTokenInfo": self._get_token_info,
            "createTopic": self._create_topic,
            "getTopicInfo": self._get_topic_info,
            "createContract": self._create_contract,
            "getContractInfo": self._get_contract_info,
            "getScheduleInfo": lambda params: {"error": "NOT_IMPLEMENTED"},
        }

    # ---- store ----

    def _new_id(self):
        self._next_num += 1
        return f"0.0.{self._next_num}"

    def write(self, kind, entity_id, state):
        self.entities[(kind, entity_id)] = state
        self._pending[(kind, entity_id)] = [self.mirror_lag, copy.deepcopy(state)]

    def mirror_view(self, kind, entity_id):
        pending = self._pending.get((kind, entity_id))
        if pending is not None:
            if pending[0] > 0:
                pending[0] -= 1
            else:
                self._mirror[(kind, entity_id)] = pending[1]
                del self._pending[(kind, entity_id)]
        return self._mirror.get((kind, entity_id))

    def methods_called(self, name):
        return [r for r in self.requests if r.get("method") == name]

    # ---- JSON-RPC methods ----

    def _setup(self, params):
        if "operatorAccountId" not in params or "operatorPrivateKey" not in params:
            raise RpcFault(-32602, "Invalid params")
        return {"message": "Successfully setup client", "status": "SUCCESS"}

    def _reset(self, params):
        return {"status": "SUCCESS"}

    def _generate_key(self, params):
        key_type = params.get("type")
        if key_type in _PRIVATE_TYPES:
            return {"key": generate_private_key(_PRIVATE_TYPES[key_type])}
        from_key = params.get("fromKey")
        if key_type in _PUBLIC_TYPES:
            algorithm = _PUBLIC_TYPES[key_type]
            private = from_key or generate_private_key(algorithm)
            return {"key": public_key_from_private(private, algorithm)}
        if key_type == "evmAddress":
            source = from_key or generate_private_key(KeyAlgorithm.ECDSA_SECP256K1)
            return {"key": evm_address_from_key(source)}
        raise RpcFault(-32602, "Invalid params", f"unsupported key type {key_type}")

    def _create_account(self, params):
        if "key" not in params:
            raise RpcFault(-32001, "Hiero error", "KEY_REQUIRED")
        account_id = self._new_id()
        self.write("account", account_id, {"key": params["key"]})
        return {"accountId": account_id, "status": "SUCCESS"}

    def _update_account(self, params):
        account_id = params.get("accountId")
        if ("account", account_id) not in self.entities:
            raise RpcFault(-32001, "Hiero error", "INVALID_ACCOUNT_ID")
        state = dict(self.entities[("account", account_id)])
        if "key" in params:
            state["key"] = params["key"]
        self.write("account", account_id, state)
        return {"status": "SUCCESS"}

    def _get_account_info(self, params):
        state = self.entities.get(("account", params.get("accountId")))
        if state is None:
            raise RpcFault(-32001, "Hiero error", "INVALID_ACCOUNT_ID")
        return {"accountId": params["accountId"], "key": consensus_key(state["key"])}

    def _create_token(self, params):
        token_id = self._new_id()
        self.write("token", token_id, {
            "adminKey": params.get("adminKey"),
            "customFees": params.get("customFees", []),
        })
        return {"tokenId": token_id, "status": "SUCCESS"}

    def _get_token_info(self, params):
        state = self.entities.get(("token", params.get("tokenId")))
        if state is None:
            raise RpcFault(-32001, "Hiero error", "INVALID_TOKEN_ID")
        return {
            "tokenId": params["tokenId"],
            "adminKey": consensus_key(state["adminKey"]),
            "customFees": state["customFees"],
        }

    def _create_topic(self, params):
        topic_id = self._new_id()
        self.write("topic", topic_id, {
            "adminKey": params.get("adminKey"),
            "submitKey": params.get("submitKey"),
        })
        return {"topicId": topic_id, "status": "SUCCESS"}

    def _get_topic_info(self, params):
        state = self.entities.get(("topic", params.get("topicId")))
        if state is None:
            raise RpcFault(-32001, "Hiero error", "INVALID_TOPIC_ID")
        return {
            "topicId": params["topicId"],
            "adminKey": consensus_key(state["adminKey"]),
            "submitKey": consensus_key(state["submitKey"]),
        }

    def _create_contract(self, params):
        contract_id = self._new_id()
        self.write("contract", contract_id, {"adminKey": params.get("adminKey")})
        return {"contractId": contract_id, "status": "SUCCESS"}

    def _get_contract_info(self, params):
        state = self.entities.get(("contract", params.get("contractId")))
        if state is None:
            raise RpcFault(-32001, "Hiero error", "INVALID_CONTRACT_ID")
        return {
            "contractId": params["contractId"],
            "adminKey": consensus_key(state["adminKey"]),
        }

    # ---- HTTP ----

    async def handle_rpc(self, request):
        body = await request.json()
        self.requests.append(body)
        request_id = body.get("id")
        handler = self.methods.get(body.get("method"))
        if handler is None:
            return web.json_response({
                "jsonrpc": "2.0", "id": request_id,
                "error": {"code": -32601, "message": "Method not found"},
            })
        try:
            result = handler(body.get("params") or {})
        except RpcFault as fault:
            error = {"code": fault.code, "message": fault.message}
            if fault.status:
                error["data"] = {"status": fault.status}
            return web.json_response({"jsonrpc": "2.0", "id": request_id, "error": error})
        return web.json_response({"jsonrpc": "2.0", "id": request_id, "result": result})

    async def handle_account(self, request):
        self.mirror_reads += 1
        account_id = request.match_info["id"]
        state = self.mirror_view("account", account_id)
        if state is None:
            return web.json_response({"_status": {"messages": [{"message": "Not found"}]}},
                                     status=404)
        return web.json_response({"account": account_id, "key": mirror_key(state["key"])})

    async def handle_token(self, request):
        self.mirror_reads += 1
        token_id = request.match_info["id"]
        state = self.mirror_view("token", token_id)
        if state is None:
            return web.json_response({"_status": {"messages": [{"message": "Not found"}]}},
                                     status=404)
        return web.json_response({
            "token_id": token_id,
            "admin_key": mirror_key(state["adminKey"]),
            "custom_fees": mirror_fees(state["customFees"]),
        })

    async def handle_topic(self, request):
        self.mirror_reads += 1
        topic_id = request.match_info["id"]
        state = self.mirror_view("topic", topic_id)
        if state is None:
            return web.json_response({"_status": {"messages": [{"message": "Not found"}]}},
                                     status=404)
        return web.json_response({
            "topic_id": topic_id,
            "admin_key": mirror_key(state["adminKey"]),
            "submit_key": mirror_key(state["submitKey"]),
        })

    async def handle_contract(self, request):
        self.mirror_reads += 1
        contract_id = request.match_info["id"]
        state = self.mirror_view("contract", contract_id)
        if state is None:
            return web.json_response({"_status": {"messages": [{"message": "Not found"}]}},
                                     status=404)
        return web.json_response({
            "contract_id": contract_id,
            "admin_key": mirror_key(state["adminKey"]),
        })

    def rpc_app(self):
        app = web.Application()
        app.router.add_post("/", self.handle_rpc)
        return app

    def mirror_app(self):
        app = web.Application()
        app.router.add_get("/api/v1/accounts/{id}", self.handle_account)
        app.router.add_get("/api/v1/tokens/{id}", self.handle_token)
        app.router.add_get("/api/v1/topics/{id}", self.handle_topic)
        app.router.add_get("/api/v1/contracts/{id}", self.handle_contract)
        return app


@pytest.fixture
def network():
    """Fake backend whose mirror lags two reads behind every write."""
    return FakeNetwork(mirror_lag=2)


@pytest_asyncio.fixture
async def fake_servers(network):
    rpc = TestServer(network.rpc_app())
    mirror = TestServer(network.mirror_app())
    await rpc.start_server()
    await mirror.start_server()
    yield rpc, mirror
    await rpc.close()
    await mirror.close()


@pytest.fixture
def tck_config(fake_servers):
    """Point the plugin fixtures at the fake servers, with no poll delay."""
    rpc, mirror = fake_servers
    cfg = TCKConfig()
    cfg.rpc.url = str(rpc.make_url("/"))
    cfg.rpc.timeout_seconds = 5.0
    cfg.mirror.rest_url = str(mirror.make_url("")).rstrip("/")
    cfg.mirror.timeout_seconds = 5.0
    cfg.consistency.interval_seconds = 0.0
    return cfg
