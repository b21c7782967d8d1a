"""
Tests for tck_core.custom_fees — normalising and comparing fee schedules
reported by the consensus and mirror sources.
"""

from __future__ import annotations

import unittest

import pytest

from tck_core.custom_fees import (
    EXCLUSIVE,
    INCLUSIVE,
    FixedFee,
    FractionalFee,
    RoyaltyFee,
    consensus_fee_matches,
    fee_from_consensus,
    fee_matches,
    fee_schedules_equal,
    fees_from_consensus,
    fees_from_mirror,
    mirror_fee_matches,
    schedule_contains,
    verify_token_custom_fee,
    verify_token_fee_schedule,
)
from tck_core.errors import ConsistencyTimeout

CONSENSUS_FEES = [
    {
        "feeCollectorAccountId": "0.0.9",
        "feeCollectorsExempt": True,
        "fixedFee": {"amount": "10", "denominatingTokenId": "0.0.77"},
    },
    {
        "feeCollectorAccountId": "0.0.9",
        "feeCollectorsExempt": False,
        "fractionalFee": {"numerator": "1", "denominator": "10", "minimumAmount": "1",
                          "maximumAmount": "20", "assessmentMethod": "exclusive"},
    },
    {
        "feeCollectorAccountId": "0.0.8",
        "feeCollectorsExempt": False,
        "royaltyFee": {"numerator": "1", "denominator": "20",
                       "fallbackFee": {"amount": "5"}},
    },
]

MIRROR_FEES = {
    "created_timestamp": "1700000000.000000000",
    "fixed_fees": [{
        "amount": 10, "collector_account_id": "0.0.9",
        "denominating_token_id": "0.0.77", "all_collectors_are_exempt": True,
    }],
    "fractional_fees": [{
        "amount": {"numerator": 1, "denominator": 10},
        "collector_account_id": "0.0.9", "minimum": 1, "maximum": 20,
        "net_of_transfers": True, "all_collectors_are_exempt": False,
    }],
    "royalty_fees": [{
        "amount": {"numerator": 1, "denominator": 20},
        "collector_account_id": "0.0.8",
        "fallback_fee": {"amount": 5, "denominating_token_id": None},
        "all_collectors_are_exempt": False,
    }],
}


class TestParsing(unittest.TestCase):

    def test_consensus_fixed(self):
        fee = fee_from_consensus(CONSENSUS_FEES[0])
        self.assertEqual(fee, FixedFee("0.0.9", 10, "0.0.77", True))

    def test_consensus_fractional(self):
        fee = fee_from_consensus(CONSENSUS_FEES[1])
        self.assertEqual(fee, FractionalFee("0.0.9", 1, 10, 1, 20, EXCLUSIVE))

    def test_consensus_royalty(self):
        fee = fee_from_consensus(CONSENSUS_FEES[2])
        self.assertEqual(fee, RoyaltyFee("0.0.8", 1, 20, 5, None))

    def test_unknown_shape(self):
        with self.assertRaises(ValueError):
            fee_from_consensus({"feeCollectorAccountId": "0.0.9", "mysteryFee": {}})

    def test_mirror_schedule(self):
        fees = fees_from_mirror(MIRROR_FEES)
        self.assertEqual(len(fees), 3)
        self.assertEqual(fees[1].assessment_method, EXCLUSIVE)

    def test_mirror_inclusive(self):
        raw = {"fractional_fees": [{"amount": {"numerator": 1, "denominator": 2},
                                    "collector_account_id": "0.0.9",
                                    "net_of_transfers": False}]}
        self.assertEqual(fees_from_mirror(raw)[0].assessment_method, INCLUSIVE)

    def test_empty_inputs(self):
        self.assertEqual(fees_from_consensus(None), [])
        self.assertEqual(fees_from_mirror(None), [])
        self.assertEqual(fees_from_mirror({"fixed_fees": None}), [])


class TestComparison(unittest.TestCase):

    def test_sources_agree(self):
        self.assertTrue(fee_schedules_equal(fees_from_consensus(CONSENSUS_FEES),
                                            fees_from_mirror(MIRROR_FEES)))

    def test_order_insensitive(self):
        reordered = list(reversed(CONSENSUS_FEES))
        self.assertTrue(fee_schedules_equal(fees_from_consensus(reordered),
                                            fees_from_mirror(MIRROR_FEES)))

    def test_multiset_not_set(self):
        fee = FixedFee("0.0.9", 10)
        self.assertFalse(fee_schedules_equal([fee, fee], [fee]))

    def test_different_amount(self):
        self.assertFalse(fee_matches(FixedFee("0.0.9", 10), FixedFee("0.0.9", 11)))

    def test_different_type(self):
        self.assertFalse(fee_matches(FixedFee("0.0.9", 1), RoyaltyFee("0.0.9", 1, 1)))

    def test_fractional_fields_all_compared(self):
        expected = FractionalFee("0.0.9", 1, 10, 1, 20, EXCLUSIVE)
        self.assertTrue(consensus_fee_matches(expected, expected))
        for changed in (
            FractionalFee("0.0.9", 2, 10, 1, 20, EXCLUSIVE),
            FractionalFee("0.0.9", 1, 11, 1, 20, EXCLUSIVE),
            FractionalFee("0.0.9", 1, 10, 2, 20, EXCLUSIVE),
            FractionalFee("0.0.9", 1, 10, 1, 21, EXCLUSIVE),
            FractionalFee("0.0.9", 1, 10, 1, 20, INCLUSIVE),
        ):
            self.assertFalse(consensus_fee_matches(changed, expected))

    def test_exempt_flag(self):
        exempt = FixedFee("0.0.9", 10, all_collectors_exempt=True)
        plain = FixedFee("0.0.9", 10)
        self.assertFalse(consensus_fee_matches(exempt, plain))
        self.assertFalse(mirror_fee_matches(exempt, plain))
        self.assertTrue(mirror_fee_matches(exempt, plain, exempt_reported=False))

    def test_schedule_contains(self):
        schedule = fees_from_mirror(MIRROR_FEES)
        self.assertTrue(schedule_contains(schedule, RoyaltyFee("0.0.8", 1, 20, 5)))
        self.assertFalse(schedule_contains(schedule, RoyaltyFee("0.0.8", 1, 20, 6)))
        self.assertFalse(schedule_contains(None, RoyaltyFee("0.0.8", 1, 20, 5)))


class TestCrossSource:
    @pytest.mark.asyncio
    async def test_verify_token_custom_fee(self, gateway, consensus_reader, mirror_client,
                                           verifier, network):
        created = await gateway.call("createToken", {"customFees": CONSENSUS_FEES})
        token_id = created["tokenId"]
        reads_before = network.mirror_reads
        consensus, mirror = await verify_token_custom_fee(
            consensus_reader, mirror_client, verifier, token_id,
            FractionalFee("0.0.9", 1, 10, 1, 20, EXCLUSIVE),
        )
        assert fee_schedules_equal(consensus, mirror)
        # two stale (404) reads, then the indexed token
        assert network.mirror_reads - reads_before == 3

    @pytest.mark.asyncio
    async def test_verify_token_fee_schedule(self, gateway, consensus_reader, mirror_client,
                                             verifier):
        created = await gateway.call("createToken", {"customFees": CONSENSUS_FEES[:1]})
        consensus, mirror = await verify_token_fee_schedule(
            consensus_reader, mirror_client, verifier, created["tokenId"])
        assert consensus == mirror == [FixedFee("0.0.9", 10, "0.0.77", True)]

    @pytest.mark.asyncio
    async def test_missing_fee_times_out(self, gateway, consensus_reader, mirror_client,
                                         verifier):
        created = await gateway.call("createToken", {"customFees": CONSENSUS_FEES[:1]})
        with pytest.raises(ConsistencyTimeout):
            await verify_token_custom_fee(
                consensus_reader, mirror_client, verifier, created["tokenId"],
                FixedFee("0.0.9", 999),
            )
