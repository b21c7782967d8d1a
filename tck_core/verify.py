"""
Cross-source key assertions.

After a key is installed on an entity, the consensus and mirror sources
must both report it.  The two sources frame keys differently, so each
observed key is reduced to a :class:`~tck_core.key_codec.RawKeyView` and
compared to the expected key by the suffix rule, polling through the
:class:`~tck_core.consistency.ConsistencyVerifier` until the lagging
mirror catches up.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from tck_core.consistency import ConsistencyCheck
from tck_core.key_codec import (
    RawKeyView,
    decode_list_keys,
    raw_view_from_mirror,
    to_raw_view,
    views_match,
)

if TYPE_CHECKING:
    from tck_core.consensus import ConsensusReader
    from tck_core.consistency import ConsistencyVerifier
    from tck_core.context import ScenarioContext
    from tck_core.mirror import MirrorNodeClient

KeyViews = tuple[Optional[RawKeyView], Optional[RawKeyView]]


class _NotIndexed:
    """Mirror placeholder for an entity the mirror has not ingested yet."""

    def __repr__(self) -> str:
        return "<not indexed>"


NOT_INDEXED = _NotIndexed()


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def flatten_key_views(key: str | RawKeyView) -> list[RawKeyView]:
    """Expand a key into its leaf views, depth first in encoded order."""
    view = to_raw_view(key) if isinstance(key, str) else key
    if not view.is_composite:
        return [view]
    leaves: list[RawKeyView] = []
    for child in decode_list_keys(view.raw).keys:
        leaves.extend(flatten_key_views(child))
    return leaves


async def verify_entity_key(
    consensus_fetch: Callable[[], Awaitable[dict]],
    mirror_fetch: Callable[[], Awaitable[Optional[dict]]],
    consensus_field: str,
    mirror_field: str,
    expected: str | None,
    verifier: ConsistencyVerifier,
    ctx: ScenarioContext | None = None,
    description: str = "",
) -> KeyViews:
    """Poll both sources until each reports *expected* under its field.

    ``expected=None`` asserts that the key is absent on both sides.
    *mirror_fetch* may return None while the mirror has not indexed the
    entity; that counts as not converged.
    Returns the agreeing ``(consensus_view, mirror_view)`` pair.
    """
    expected_view = to_raw_view(expected) if expected is not None else None

    async def probe() -> tuple[Optional[RawKeyView], Any]:
        info = await consensus_fetch()
        data = await mirror_fetch()
        observed = info.get(consensus_field)
        consensus_view = to_raw_view(observed) if observed is not None else None
        if data is None:
            return consensus_view, NOT_INDEXED
        return consensus_view, raw_view_from_mirror(data.get(mirror_field))

    def agrees(a: RawKeyView | None, b: Any) -> bool:
        if b is NOT_INDEXED:
            return False
        return views_match(a, expected_view) and views_match(b, expected_view)

    check = ConsistencyCheck(probe, agrees, description=description or f"key {consensus_field}")
    return await verifier.retry_until(check, ctx)


async def verify_account_key(
    consensus: ConsensusReader,
    mirror: MirrorNodeClient,
    verifier: ConsistencyVerifier,
    account_id: str,
    expected: str | None,
    ctx: ScenarioContext | None = None,
) -> KeyViews:
    return await verify_entity_key(
        lambda: consensus.get_account_info(account_id, ctx),
        lambda: mirror.get_account_data(account_id, missing_ok=True),
        "key", "key", expected, verifier, ctx,
        description=f"key of account {account_id}",
    )


async def verify_token_key(
    consensus: ConsensusReader,
    mirror: MirrorNodeClient,
    verifier: ConsistencyVerifier,
    token_id: str,
    key_name: str,
    expected: str | None,
    ctx: ScenarioContext | None = None,
) -> KeyViews:
    """*key_name* is the consensus spelling, e.g. ``adminKey``."""
    return await verify_entity_key(
        lambda: consensus.get_token_info(token_id, ctx),
        lambda: mirror.get_token_data(token_id, missing_ok=True),
        key_name, _snake(key_name), expected, verifier, ctx,
        description=f"{key_name} of token {token_id}",
    )


async def verify_topic_key(
    consensus: ConsensusReader,
    mirror: MirrorNodeClient,
    verifier: ConsistencyVerifier,
    topic_id: str,
    key_name: str,
    expected: str | None,
    ctx: ScenarioContext | None = None,
) -> KeyViews:
    return await verify_entity_key(
        lambda: consensus.get_topic_info(topic_id, ctx),
        lambda: mirror.get_topic_data(topic_id, missing_ok=True),
        key_name, _snake(key_name), expected, verifier, ctx,
        description=f"{key_name} of topic {topic_id}",
    )


async def verify_contract_admin_key(
    consensus: ConsensusReader,
    mirror: MirrorNodeClient,
    verifier: ConsistencyVerifier,
    contract_id: str,
    expected: str | None,
    ctx: ScenarioContext | None = None,
) -> KeyViews:
    return await verify_entity_key(
        lambda: consensus.get_contract_info(contract_id, ctx),
        lambda: mirror.get_contract_data(contract_id, missing_ok=True),
        "adminKey", "admin_key", expected, verifier, ctx,
        description=f"admin key of contract {contract_id}",
    )
