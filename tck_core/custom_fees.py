"""
Custom-fee schedule comparison between the consensus and mirror sources.

Both sources describe the same three fee shapes but spell them differently:

    consensus (JSON-RPC)                      mirror (REST)
    -----------------------------------       ------------------------------------
    customFees: [                             custom_fees: {
      {feeCollectorAccountId,                   fixed_fees:      [{amount,
       feeCollectorsExempt,                       collector_account_id,
       fixedFee: {amount,                         denominating_token_id,
                  denominatingTokenId}}           all_collectors_are_exempt}],
      {..., fractionalFee: {numerator,          fractional_fees: [{amount: {numerator,
             denominator, minimumAmount,                          denominator},
             maximumAmount,                       minimum, maximum,
             assessmentMethod}}                   net_of_transfers, ...}],
      {..., royaltyFee: {numerator,             royalty_fees:    [{amount: {...},
             denominator, fallbackFee}}]          fallback_fee: {amount,
                                                    denominating_token_id}, ...}]}

Both are normalised into the frozen dataclasses below and compared
structurally.  ``net_of_transfers == True`` is the mirror's spelling of the
``exclusive`` assessment method.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Union

from tck_core.consistency import ConsistencyCheck

if TYPE_CHECKING:
    from tck_core.consensus import ConsensusReader
    from tck_core.consistency import ConsistencyVerifier
    from tck_core.context import ScenarioContext
    from tck_core.mirror import MirrorNodeClient


INCLUSIVE = "inclusive"
EXCLUSIVE = "exclusive"


@dataclass(frozen=True)
class FixedFee:
    collector: str
    amount: int
    denominating_token_id: str | None = None
    all_collectors_exempt: bool = False


@dataclass(frozen=True)
class FractionalFee:
    collector: str
    numerator: int
    denominator: int
    minimum: int = 0
    maximum: int = 0              # 0 = no maximum
    assessment_method: str = INCLUSIVE
    all_collectors_exempt: bool = False


@dataclass(frozen=True)
class RoyaltyFee:
    collector: str
    numerator: int
    denominator: int
    fallback_amount: int | None = None
    fallback_token_id: str | None = None
    all_collectors_exempt: bool = False


CustomFee = Union[FixedFee, FractionalFee, RoyaltyFee]


def _int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    return int(value)


def _opt_int(value: Any) -> int | None:
    return None if value is None or value == "" else int(value)


# ═══════════════════════════════════════════════════════════════════
#  Parsing
# ═══════════════════════════════════════════════════════════════════

def fee_from_consensus(entry: dict) -> CustomFee:
    """Normalise one entry of a consensus ``customFees`` list."""
    collector = str(entry.get("feeCollectorAccountId", ""))
    exempt = bool(entry.get("feeCollectorsExempt", False))

    if "fixedFee" in entry:
        fixed = entry["fixedFee"]
        return FixedFee(collector, _int(fixed.get("amount")),
                        fixed.get("denominatingTokenId"), exempt)
    if "fractionalFee" in entry:
        frac = entry["fractionalFee"]
        return FractionalFee(
            collector,
            _int(frac.get("numerator")),
            _int(frac.get("denominator"), 1),
            _int(frac.get("minimumAmount")),
            _int(frac.get("maximumAmount")),
            str(frac.get("assessmentMethod", INCLUSIVE)).lower(),
            exempt,
        )
    if "royaltyFee" in entry:
        royalty = entry["royaltyFee"]
        fallback = royalty.get("fallbackFee") or {}
        return RoyaltyFee(
            collector,
            _int(royalty.get("numerator")),
            _int(royalty.get("denominator"), 1),
            _opt_int(fallback.get("amount")),
            fallback.get("denominatingTokenId"),
            exempt,
        )
    raise ValueError(f"Unknown custom fee shape: {sorted(entry)}")


def fees_from_consensus(custom_fees: list[dict] | None) -> list[CustomFee]:
    return [fee_from_consensus(entry) for entry in custom_fees or []]


def fees_from_mirror(custom_fees: dict | None) -> list[CustomFee]:
    """Normalise a mirror ``custom_fees`` object."""
    custom_fees = custom_fees or {}
    fees: list[CustomFee] = []

    for entry in custom_fees.get("fixed_fees") or []:
        fees.append(FixedFee(
            str(entry.get("collector_account_id", "")),
            _int(entry.get("amount")),
            entry.get("denominating_token_id"),
            bool(entry.get("all_collectors_are_exempt", False)),
        ))

    for entry in custom_fees.get("fractional_fees") or []:
        amount = entry.get("amount") or {}
        fees.append(FractionalFee(
            str(entry.get("collector_account_id", "")),
            _int(amount.get("numerator")),
            _int(amount.get("denominator"), 1),
            _int(entry.get("minimum")),
            _int(entry.get("maximum")),
            EXCLUSIVE if entry.get("net_of_transfers") else INCLUSIVE,
            bool(entry.get("all_collectors_are_exempt", False)),
        ))

    for entry in custom_fees.get("royalty_fees") or []:
        amount = entry.get("amount") or {}
        fallback = entry.get("fallback_fee") or {}
        fees.append(RoyaltyFee(
            str(entry.get("collector_account_id", "")),
            _int(amount.get("numerator")),
            _int(amount.get("denominator"), 1),
            _opt_int(fallback.get("amount")),
            fallback.get("denominating_token_id"),
            bool(entry.get("all_collectors_are_exempt", False)),
        ))

    return fees


# ═══════════════════════════════════════════════════════════════════
#  Comparison
# ═══════════════════════════════════════════════════════════════════

def fee_matches(observed: CustomFee, expected: CustomFee, *, compare_exempt: bool = True) -> bool:
    """Structural equality of two normalised fees."""
    if type(observed) is not type(expected):
        return False
    if not compare_exempt:
        observed = replace(observed, all_collectors_exempt=False)
        expected = replace(expected, all_collectors_exempt=False)
    return observed == expected


def consensus_fee_matches(fee: CustomFee, expected: CustomFee) -> bool:
    return fee_matches(fee, expected)


def mirror_fee_matches(fee: CustomFee, expected: CustomFee, *, exempt_reported: bool = True) -> bool:
    """Mirror entries compare the exemption flag only when the mirror reports it."""
    return fee_matches(fee, expected, compare_exempt=exempt_reported)


def schedule_contains(schedule: list[CustomFee] | None, expected: CustomFee,
                      *, compare_exempt: bool = True) -> bool:
    if schedule is None:
        return False
    return any(fee_matches(fee, expected, compare_exempt=compare_exempt) for fee in schedule)


def fee_schedules_equal(a: list[CustomFee], b: list[CustomFee]) -> bool:
    """Order-insensitive equality of two fee schedules."""
    return Counter(a) == Counter(b)


# ═══════════════════════════════════════════════════════════════════
#  Cross-source assertions
# ═══════════════════════════════════════════════════════════════════

def _token_fee_probe(consensus: ConsensusReader, mirror: MirrorNodeClient,
                     token_id: str, ctx: ScenarioContext | None):
    async def probe() -> tuple[list[CustomFee], list[CustomFee] | None]:
        info = await consensus.get_token_info(token_id, ctx)
        data = await mirror.get_token_data(token_id, missing_ok=True)
        mirror_fees = None if data is None else fees_from_mirror(data.get("custom_fees"))
        return fees_from_consensus(info.get("customFees")), mirror_fees
    return probe


async def verify_token_custom_fee(
    consensus: ConsensusReader,
    mirror: MirrorNodeClient,
    verifier: ConsistencyVerifier,
    token_id: str,
    expected: CustomFee,
    ctx: ScenarioContext | None = None,
) -> tuple[list[CustomFee], list[CustomFee] | None]:
    """Wait until both sources list *expected* among the token's fees."""
    check = ConsistencyCheck(
        _token_fee_probe(consensus, mirror, token_id, ctx),
        lambda a, b: (any(consensus_fee_matches(fee, expected) for fee in a)
                      and b is not None
                      and any(mirror_fee_matches(fee, expected) for fee in b)),
        description=f"custom fee {type(expected).__name__} on {token_id}",
    )
    return await verifier.retry_until(check, ctx)


async def verify_token_fee_schedule(
    consensus: ConsensusReader,
    mirror: MirrorNodeClient,
    verifier: ConsistencyVerifier,
    token_id: str,
    ctx: ScenarioContext | None = None,
) -> tuple[list[CustomFee], list[CustomFee] | None]:
    """Wait until the mirror reports the same fee schedule as consensus."""
    check = ConsistencyCheck(
        _token_fee_probe(consensus, mirror, token_id, ctx),
        lambda a, b: b is not None and fee_schedules_equal(a, b),
        description=f"fee schedule of {token_id}",
    )
    return await verifier.retry_until(check, ctx)
