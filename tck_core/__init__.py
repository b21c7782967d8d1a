"""
tck-harness - core of a compatibility test harness for ledger network SDKs.

Key features:
- JSON-RPC 2.0 gateway to the SDK backend under test (aiohttp)
- Recursive key specs (ED25519, ECDSA secp256k1, key lists, threshold keys)
- Local protobuf key-list encoding and DER prefix handling
- Eventual-consistency polling between consensus and mirror sources
- Custom-fee schedule comparison across both sources
- pytest plugin: skip-on-not-implemented and scenario fixtures
"""

__version__ = "0.3.0"
__all__ = [
    "errors",
    "context",
    "gateway",
    "keys",
    "key_codec",
    "crypto_keys",
    "key_generator",
    "consistency",
    "custom_fees",
    "mirror",
    "consensus",
    "verify",
    "config",
    "logging_config",
]
