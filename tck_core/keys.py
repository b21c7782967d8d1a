"""
Recursive key-structure model.

A key specification is a closed union of two shapes:

  - :class:`SingleKey` – one ED25519 or ECDSA(secp256k1) key, either
    generated fresh by the backend or supplied as public / private material
  - :class:`KeyList`   – an ordered list of child specs; ``threshold=None``
    means every child must sign, ``threshold=k`` means any *k* of them

``KeyList(())`` is the canonical "no key" sentinel used to remove a key in
update operations.

Specs are immutable and built before any network traffic.  Generating a
spec yields a :class:`GeneratedKey` (see :mod:`tck_core.key_generator`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class KeyAlgorithm(Enum):
    ED25519 = "ed25519"
    ECDSA_SECP256K1 = "ecdsaSecp256k1"


class KeyMaterialKind(Enum):
    FRESH = "fresh"                 # backend generates a private key
    FRESH_PUBLIC = "freshPublic"    # backend generates a public key only
    PUBLIC = "public"
    PRIVATE = "private"

    @property
    def is_fresh(self) -> bool:
        return self in (KeyMaterialKind.FRESH, KeyMaterialKind.FRESH_PUBLIC)


@dataclass(frozen=True)
class SingleKey:
    """A leaf key."""
    algorithm: KeyAlgorithm
    material: KeyMaterialKind = KeyMaterialKind.FRESH
    value: str | None = None   # hex; required unless material is fresh

    def __post_init__(self):
        if self.material.is_fresh:
            if self.value is not None:
                raise ValueError("A fresh key cannot carry key material")
        elif not self.value:
            raise ValueError(f"A {self.material.value} key requires key material")


@dataclass(frozen=True)
class KeyList:
    """An all-of (``threshold=None``) or k-of-n key list."""
    children: tuple[KeySpec, ...] = field(default_factory=tuple)
    threshold: int | None = None

    def __post_init__(self):
        # accept any sequence, store a tuple
        object.__setattr__(self, "children", tuple(self.children))
        if self.threshold is not None:
            if self.threshold < 1:
                raise ValueError("threshold must be a positive integer")
            if self.threshold > len(self.children):
                raise ValueError(
                    f"threshold {self.threshold} exceeds number of keys ({len(self.children)})"
                )

    @property
    def is_threshold(self) -> bool:
        return self.threshold is not None

    @property
    def is_empty(self) -> bool:
        return not self.children


KeySpec = Union[SingleKey, KeyList]


@dataclass(frozen=True)
class GeneratedKey:
    """Result of materialising a :data:`KeySpec`.

    ``encoded`` is the key as the network encodes it (hex, including DER or
    container framing).  ``signing_keys`` are the leaf private keys, in
    generation order, a caller must present to satisfy the key.
    """
    encoded: str
    signing_keys: tuple[str, ...] = ()


# ═══════════════════════════════════════════════════════════════════
#  Constructors
# ═══════════════════════════════════════════════════════════════════

def ed25519(material: KeyMaterialKind = KeyMaterialKind.FRESH, value: str | None = None) -> SingleKey:
    return SingleKey(KeyAlgorithm.ED25519, material, value)


def ecdsa(material: KeyMaterialKind = KeyMaterialKind.FRESH, value: str | None = None) -> SingleKey:
    return SingleKey(KeyAlgorithm.ECDSA_SECP256K1, material, value)


def public_key(algorithm: KeyAlgorithm, value: str) -> SingleKey:
    return SingleKey(algorithm, KeyMaterialKind.PUBLIC, value)


def private_key(algorithm: KeyAlgorithm, value: str) -> SingleKey:
    return SingleKey(algorithm, KeyMaterialKind.PRIVATE, value)


def key_list(*children: KeySpec) -> KeyList:
    return KeyList(children)


def threshold_key(threshold: int, *children: KeySpec) -> KeyList:
    return KeyList(children, threshold)


EMPTY_KEY_LIST = KeyList(())


# ═══════════════════════════════════════════════════════════════════
#  Backend parameter shape
# ═══════════════════════════════════════════════════════════════════

_LEAF_TYPES = {
    (KeyAlgorithm.ED25519, KeyMaterialKind.PRIVATE): "ed25519PrivateKey",
    (KeyAlgorithm.ED25519, KeyMaterialKind.PUBLIC): "ed25519PublicKey",
    (KeyAlgorithm.ECDSA_SECP256K1, KeyMaterialKind.PRIVATE): "ecdsaSecp256k1PrivateKey",
    (KeyAlgorithm.ECDSA_SECP256K1, KeyMaterialKind.PUBLIC): "ecdsaSecp256k1PublicKey",
}

_REQUESTED = {
    KeyMaterialKind.FRESH: KeyMaterialKind.PRIVATE,
    KeyMaterialKind.FRESH_PUBLIC: KeyMaterialKind.PUBLIC,
}

EVM_ADDRESS_TYPE = "evmAddress"


def private_key_type(algorithm: KeyAlgorithm) -> str:
    """``generateKey`` type name for a private key of *algorithm*."""
    return _LEAF_TYPES[(algorithm, KeyMaterialKind.PRIVATE)]


def public_key_type(algorithm: KeyAlgorithm) -> str:
    return _LEAF_TYPES[(algorithm, KeyMaterialKind.PUBLIC)]


def to_params(spec: KeySpec) -> dict[str, Any]:
    """Render *spec* in the backend's ``generateKey`` parameter shape.

    ``FRESH`` leaves are rendered as private-key requests and
    ``FRESH_PUBLIC`` leaves as public-key requests, both without ``fromKey``.
    """
    if isinstance(spec, SingleKey):
        material = _REQUESTED.get(spec.material, spec.material)
        params: dict[str, Any] = {"type": _LEAF_TYPES[(spec.algorithm, material)]}
        if spec.value is not None:
            params["fromKey"] = spec.value
        return params
    if isinstance(spec, KeyList):
        params = {
            "type": "thresholdKey" if spec.is_threshold else "keyList",
            "keys": [to_params(child) for child in spec.children],
        }
        if spec.is_threshold:
            params["threshold"] = spec.threshold
        return params
    raise TypeError(f"Not a key spec: {spec!r}")


def from_params(params: dict[str, Any]) -> KeySpec:
    """Inverse of :func:`to_params` for the parameter dicts used by scenarios."""
    kind = params.get("type")
    if kind in ("keyList", "thresholdKey"):
        children = tuple(from_params(p) for p in params.get("keys", []))
        if kind == "keyList":
            return KeyList(children)
        threshold = params.get("threshold")
        if threshold is None:
            raise ValueError("thresholdKey requires a threshold")
        return KeyList(children, threshold)
    for (algorithm, material), name in _LEAF_TYPES.items():
        if name == kind:
            value = params.get("fromKey")
            if value is None:
                fresh = (KeyMaterialKind.FRESH_PUBLIC if material is KeyMaterialKind.PUBLIC
                         else KeyMaterialKind.FRESH)
                return SingleKey(algorithm, fresh)
            return SingleKey(algorithm, material, value)
    raise ValueError(f"Unknown key type: {kind!r}")


# ═══════════════════════════════════════════════════════════════════
#  Specs used throughout the scenario corpus
# ═══════════════════════════════════════════════════════════════════

FOUR_KEYS_KEY_LIST = key_list(ed25519(), ed25519(), ecdsa(), ecdsa())

TWO_LEVELS_NESTED_KEY_LIST = key_list(
    key_list(ecdsa(), ecdsa()),
    key_list(ecdsa(), ed25519()),
    key_list(ed25519(), ecdsa()),
)

TWO_THRESHOLD_KEY = threshold_key(2, ed25519(), ecdsa(), ed25519())
