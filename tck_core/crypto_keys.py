"""
Local key derivation.

The backend hands out private keys as DER hex; deriving the matching public
key locally saves a round trip per leaf.  secp256k1 goes through ``ecdsa``
(compressed point), ED25519 through pycryptodome's ``ECC`` module.  Public
keys are returned in the same DER framing the backend uses, so the result
can be sent straight back as an authorisation key.
"""

from __future__ import annotations

import os

from Crypto.Hash import keccak
from Crypto.PublicKey import ECC
from ecdsa import SECP256k1, SigningKey, VerifyingKey

from tck_core.errors import KeyDecodeError
from tck_core.key_codec import (
    ECDSA_SECP256K1_PRIVATE_DER_PREFIX,
    ECDSA_SECP256K1_PUBLIC_DER_PREFIX,
    ED25519_PRIVATE_DER_PREFIX,
    ED25519_PUBLIC_DER_PREFIX,
    private_to_raw,
    strip_prefix,
)
from tck_core.keys import KeyAlgorithm


def _ed25519_public_raw(seed: bytes) -> bytes:
    key = ECC.construct(curve="Ed25519", seed=seed)
    # SubjectPublicKeyInfo; the raw point is the trailing 32 bytes
    return key.public_key().export_key(format="DER")[-32:]


def _secp256k1_public_raw(secret: bytes) -> bytes:
    sk = SigningKey.from_string(secret, curve=SECP256k1)
    return sk.get_verifying_key().to_string("compressed")


def public_key_from_private(private_hex: str, algorithm: KeyAlgorithm) -> str:
    """Return the DER-encoded public key (hex) for *private_hex*."""
    secret = private_to_raw(private_hex, algorithm)
    if algorithm is KeyAlgorithm.ED25519:
        return (ED25519_PUBLIC_DER_PREFIX + _ed25519_public_raw(secret)).hex()
    return (ECDSA_SECP256K1_PUBLIC_DER_PREFIX + _secp256k1_public_raw(secret)).hex()


def generate_private_key(algorithm: KeyAlgorithm) -> str:
    """Generate a DER-encoded private key (hex) without asking the backend."""
    if algorithm is KeyAlgorithm.ED25519:
        return (ED25519_PRIVATE_DER_PREFIX + os.urandom(32)).hex()
    sk = SigningKey.generate(curve=SECP256k1)
    return (ECDSA_SECP256K1_PRIVATE_DER_PREFIX + sk.to_string()).hex()


def evm_address_from_key(key_hex: str) -> str:
    """Return the 20-byte EVM address (hex, no ``0x``) of a secp256k1 key.

    *key_hex* may be a public or a private key, DER-framed or raw.
    """
    try:
        point = strip_prefix(key_hex, KeyAlgorithm.ECDSA_SECP256K1).raw
    except KeyDecodeError:
        point = _secp256k1_public_raw(private_to_raw(key_hex, KeyAlgorithm.ECDSA_SECP256K1))
    xy = VerifyingKey.from_string(point, curve=SECP256k1).to_string()
    return keccak.new(digest_bits=256, data=xy).digest()[-20:].hex()
