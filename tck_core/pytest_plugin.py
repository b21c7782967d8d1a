"""
pytest integration for scenario suites.

Enable from a ``conftest.py``::

    pytest_plugins = ["tck_core.pytest_plugin"]

Provides:
  - ``MethodNotImplemented`` escaping a test body -> the test is skipped
  - every test runs inside :func:`~tck_core.logging_config.scenario_scope`
    named after its node id
  - ``--tck-config PATH`` option and the fixtures ``tck_config``,
    ``scenario_context``, ``gateway``, ``mirror_client``,
    ``consensus_reader``, ``verifier``, ``key_generator``
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from tck_core.config import TCKConfig, load_config
from tck_core.consensus import RpcConsensusReader
from tck_core.consistency import ConsistencyVerifier
from tck_core.context import ScenarioContext
from tck_core.errors import MethodNotImplemented
from tck_core.gateway import RequestGateway
from tck_core.key_generator import KeySpecGenerator
from tck_core.logging_config import scenario_scope
from tck_core.mirror import MirrorNodeClient


def pytest_addoption(parser):
    group = parser.getgroup("tck")
    group.addoption(
        "--tck-config",
        action="store",
        default=None,
        help="TOML file with [rpc], [mirror], [consistency] and [logging] sections",
    )


@pytest.hookimpl(wrapper=True)
def pytest_runtest_call(item):
    with scenario_scope(item.nodeid):
        try:
            return (yield)
        except MethodNotImplemented as exc:
            pytest.skip(f"backend does not implement {exc.method}")


# ═══════════════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════════════

@pytest.fixture
def tck_config(request) -> TCKConfig:
    return load_config(request.config.getoption("tck_config"))


@pytest.fixture
def scenario_context(request) -> ScenarioContext:
    return ScenarioContext(name=request.node.name)


@pytest_asyncio.fixture
async def gateway(tck_config):
    async with RequestGateway.from_config(tck_config) as gw:
        yield gw


@pytest_asyncio.fixture
async def mirror_client(tck_config):
    async with MirrorNodeClient.from_config(tck_config) as client:
        yield client


@pytest.fixture
def consensus_reader(gateway) -> RpcConsensusReader:
    return RpcConsensusReader(gateway)


@pytest.fixture
def verifier(tck_config) -> ConsistencyVerifier:
    return ConsistencyVerifier.from_config(tck_config)


@pytest.fixture
def key_generator(gateway) -> KeySpecGenerator:
    return KeySpecGenerator(gateway)
