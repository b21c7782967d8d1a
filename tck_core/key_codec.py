"""
Key encoding / decoding.

Single public keys travel as DER hex:

    ED25519          302a300506032b6570032100 || 32-byte key   (12-byte prefix)
    ECDSA secp256k1  302d300706052b8104000a032200 || 33-byte compressed key
                                                                (14-byte prefix)

Composite keys travel as protobuf ``Key`` messages::

    Key          { bytes ed25519 = 2; ThresholdKey thresholdKey = 5;
                   KeyList keyList = 6; bytes ECDSA_secp256k1 = 7; }
    KeyList      { repeated Key keys = 1; }
    ThresholdKey { uint32 threshold = 1; KeyList keys = 2; }

The consensus source reports bare ``KeyList`` / ``ThresholdKey`` bytes while
the mirror source and the backend report the wrapping ``Key``.  Two
encodings are therefore compared by *suffix*: strip both to a
:class:`RawKeyView`, then the shorter view must equal the trailing bytes of
the longer one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Sequence

from tck_core.errors import KeyDecodeError
from tck_core.keys import KeyAlgorithm

logger = logging.getLogger("tck_keys")

ED25519_PUBLIC_DER_PREFIX = bytes.fromhex("302a300506032b6570032100")
ECDSA_SECP256K1_PUBLIC_DER_PREFIX = bytes.fromhex("302d300706052b8104000a032200")
ED25519_PRIVATE_DER_PREFIX = bytes.fromhex("302e020100300506032b657004220420")
ECDSA_SECP256K1_PRIVATE_DER_PREFIX = bytes.fromhex("3030020100300706052b8104000a04220420")

ED25519_KEY_LEN = 32
ECDSA_SECP256K1_PUBLIC_LEN = 33
PRIVATE_KEY_LEN = 32

# protobuf field numbers
_KEY_ED25519 = 2
_KEY_THRESHOLD = 5
_KEY_LIST = 6
_KEY_ECDSA_SECP256K1 = 7
_KEYLIST_KEYS = 1
_THRESHOLD_THRESHOLD = 1
_THRESHOLD_KEYS = 2

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_LEN = 2
_WIRE_FIXED32 = 5


class KeyKind(Enum):
    ED25519 = "ED25519"
    ECDSA_SECP256K1 = "ECDSA_SECP256K1"
    KEY_LIST = "KEY_LIST"
    THRESHOLD_KEY = "THRESHOLD_KEY"


_KIND_OF = {
    KeyAlgorithm.ED25519: KeyKind.ED25519,
    KeyAlgorithm.ECDSA_SECP256K1: KeyKind.ECDSA_SECP256K1,
}

_PUBLIC = {
    KeyAlgorithm.ED25519: (ED25519_PUBLIC_DER_PREFIX, ED25519_KEY_LEN),
    KeyAlgorithm.ECDSA_SECP256K1: (ECDSA_SECP256K1_PUBLIC_DER_PREFIX, ECDSA_SECP256K1_PUBLIC_LEN),
}

_PRIVATE = {
    KeyAlgorithm.ED25519: ED25519_PRIVATE_DER_PREFIX,
    KeyAlgorithm.ECDSA_SECP256K1: ECDSA_SECP256K1_PRIVATE_DER_PREFIX,
}


@dataclass(frozen=True)
class RawKeyView:
    """Algorithm-tagged key bytes with DER framing removed.

    For single keys ``raw`` is the bare key.  For composite keys it is the
    protobuf container, which callers can hand back to
    :func:`decode_list_keys` to descend one more level.
    """
    kind: KeyKind
    raw: bytes

    @property
    def is_composite(self) -> bool:
        return self.kind in (KeyKind.KEY_LIST, KeyKind.THRESHOLD_KEY)

    def hex(self) -> str:
        return self.raw.hex()


@dataclass(frozen=True)
class DecodedKeyList:
    keys: tuple[RawKeyView, ...]
    threshold: int | None = None


# ═══════════════════════════════════════════════════════════════════
#  Hex helpers
# ═══════════════════════════════════════════════════════════════════

def unhex(encoded: str) -> bytes:
    if not isinstance(encoded, str):
        raise KeyDecodeError(f"key encoding must be a hex string, got {type(encoded).__name__}")
    text = encoded[2:] if encoded[:2] in ("0x", "0X") else encoded
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise KeyDecodeError(f"malformed hex key encoding: {encoded[:80]!r}") from exc


# ═══════════════════════════════════════════════════════════════════
#  Single keys
# ═══════════════════════════════════════════════════════════════════

def strip_prefix(encoded: str, algorithm: KeyAlgorithm) -> RawKeyView:
    """Strip the DER public-key prefix of *algorithm* from *encoded*.

    An already-raw key of the right length is accepted as is.
    """
    data = unhex(encoded)
    prefix, length = _PUBLIC[algorithm]
    if len(data) == len(prefix) + length and data.startswith(prefix):
        return RawKeyView(_KIND_OF[algorithm], data[len(prefix):])
    if len(data) == length:
        if algorithm is KeyAlgorithm.ECDSA_SECP256K1 and data[0] not in (2, 3):
            raise KeyDecodeError(f"not a compressed secp256k1 point: {encoded}")
        return RawKeyView(_KIND_OF[algorithm], data)
    raise KeyDecodeError(
        f"{len(data)}-byte value is not a {algorithm.name} public key"
    )


def private_to_raw(encoded: str, algorithm: KeyAlgorithm) -> bytes:
    """Return the 32-byte secret of a DER (or raw) private key."""
    data = unhex(encoded)
    prefix = _PRIVATE[algorithm]
    if len(data) == len(prefix) + PRIVATE_KEY_LEN and data.startswith(prefix):
        return data[len(prefix):]
    if len(data) == PRIVATE_KEY_LEN:
        return data
    raise KeyDecodeError(f"{len(data)}-byte value is not a {algorithm.name} private key")


def detect_algorithm(encoded: str) -> KeyAlgorithm:
    """Infer the algorithm of a DER-encoded public key."""
    data = unhex(encoded)
    for algorithm, (prefix, length) in _PUBLIC.items():
        if len(data) == len(prefix) + length and data.startswith(prefix):
            return algorithm
    raise KeyDecodeError(f"unrecognised public key encoding: {encoded[:80]!r}")


# ═══════════════════════════════════════════════════════════════════
#  Protobuf wire helpers
# ═══════════════════════════════════════════════════════════════════

def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        bits = value & 0x7F
        value >>= 7
        if value:
            out.append(bits | 0x80)
        else:
            out.append(bits)
            return bytes(out)


def _field_bytes(field_no: int, payload: bytes) -> bytes:
    return _encode_varint((field_no << 3) | _WIRE_LEN) + _encode_varint(len(payload)) + payload


def _field_varint(field_no: int, value: int) -> bytes:
    return _encode_varint((field_no << 3) | _WIRE_VARINT) + _encode_varint(value)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise KeyDecodeError("truncated varint in key container")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7
        if shift > 63:
            raise KeyDecodeError("varint too long in key container")


def _iter_fields(data: bytes) -> Iterator[tuple[int, int, Any]]:
    """Yield ``(field_no, wire_type, value)`` for each field of a message."""
    pos = 0
    while pos < len(data):
        tag, pos = _read_varint(data, pos)
        field_no, wire_type = tag >> 3, tag & 0x07
        if field_no == 0:
            raise KeyDecodeError("invalid field number 0 in key container")
        if wire_type == _WIRE_VARINT:
            value, pos = _read_varint(data, pos)
        elif wire_type == _WIRE_LEN:
            length, pos = _read_varint(data, pos)
            if pos + length > len(data):
                raise KeyDecodeError("length-delimited field overruns key container")
            value = data[pos:pos + length]
            pos += length
        elif wire_type == _WIRE_FIXED64:
            value, pos = data[pos:pos + 8], pos + 8
        elif wire_type == _WIRE_FIXED32:
            value, pos = data[pos:pos + 4], pos + 4
        else:
            raise KeyDecodeError(f"unsupported wire type {wire_type} in key container")
        if pos > len(data):
            raise KeyDecodeError("truncated key container")
        yield field_no, wire_type, value


# ═══════════════════════════════════════════════════════════════════
#  Composite keys
# ═══════════════════════════════════════════════════════════════════

def leaf_key_message(encoded: str, algorithm: KeyAlgorithm) -> bytes:
    """Wrap a single public key in a protobuf ``Key`` message."""
    view = strip_prefix(encoded, algorithm)
    field_no = _KEY_ED25519 if algorithm is KeyAlgorithm.ED25519 else _KEY_ECDSA_SECP256K1
    return _field_bytes(field_no, view.raw)


def encode_key_list(child_messages: Sequence[bytes], threshold: int | None = None) -> str:
    """Assemble a ``Key{keyList}`` or ``Key{thresholdKey}`` (hex).

    *child_messages* are already-encoded ``Key`` messages in order.
    """
    key_list = b"".join(_field_bytes(_KEYLIST_KEYS, child) for child in child_messages)
    if threshold is None:
        return _field_bytes(_KEY_LIST, key_list).hex()
    body = _field_varint(_THRESHOLD_THRESHOLD, threshold) + _field_bytes(_THRESHOLD_KEYS, key_list)
    return _field_bytes(_KEY_THRESHOLD, body).hex()


def _decode_child(message: bytes) -> RawKeyView:
    fields = list(_iter_fields(message))
    if len(fields) != 1 or fields[0][1] != _WIRE_LEN:
        raise KeyDecodeError("key list entry is not a single-key Key message")
    field_no, _, value = fields[0]
    if field_no == _KEY_ED25519:
        if len(value) != ED25519_KEY_LEN:
            raise KeyDecodeError(f"ED25519 key has {len(value)} bytes")
        return RawKeyView(KeyKind.ED25519, value)
    if field_no == _KEY_ECDSA_SECP256K1:
        if len(value) != ECDSA_SECP256K1_PUBLIC_LEN:
            raise KeyDecodeError(f"secp256k1 key has {len(value)} bytes")
        return RawKeyView(KeyKind.ECDSA_SECP256K1, value)
    if field_no == _KEY_LIST:
        return RawKeyView(KeyKind.KEY_LIST, message)
    if field_no == _KEY_THRESHOLD:
        return RawKeyView(KeyKind.THRESHOLD_KEY, message)
    raise KeyDecodeError(f"unsupported key type (Key field {field_no})")


def _decode_key_list_body(body: bytes) -> tuple[RawKeyView, ...]:
    keys = []
    for field_no, wire_type, value in _iter_fields(body):
        if field_no != _KEYLIST_KEYS or wire_type != _WIRE_LEN:
            raise KeyDecodeError(f"unexpected KeyList field {field_no}")
        keys.append(_decode_child(value))
    return tuple(keys)


def _decode_threshold_body(body: bytes) -> DecodedKeyList:
    threshold = None
    keys: tuple[RawKeyView, ...] = ()
    for field_no, wire_type, value in _iter_fields(body):
        if field_no == _THRESHOLD_THRESHOLD and wire_type == _WIRE_VARINT:
            threshold = value
        elif field_no == _THRESHOLD_KEYS and wire_type == _WIRE_LEN:
            keys = _decode_key_list_body(value)
        else:
            raise KeyDecodeError(f"unexpected ThresholdKey field {field_no}")
    # proto3 omits a zero threshold on the wire
    return DecodedKeyList(keys, threshold or 0)


def _container_kind(data: bytes) -> KeyKind:
    """Classify a composite-key container by its leading tag."""
    if not data:
        return KeyKind.KEY_LIST
    tag = data[0]
    if tag == (_KEY_LIST << 3) | _WIRE_LEN:
        return KeyKind.KEY_LIST
    if tag == (_KEY_THRESHOLD << 3) | _WIRE_LEN:
        return KeyKind.THRESHOLD_KEY
    if tag == (_KEYLIST_KEYS << 3) | _WIRE_LEN:
        return KeyKind.KEY_LIST
    if tag == (_THRESHOLD_THRESHOLD << 3) | _WIRE_VARINT:
        return KeyKind.THRESHOLD_KEY
    raise KeyDecodeError(f"unrecognised key container tag 0x{tag:02x}")


def decode_list_keys(encoded: str | bytes) -> DecodedKeyList:
    """Unwrap one level of a key-list / threshold-key container.

    Accepts the wrapped ``Key`` form (backend, mirror) and the bare
    ``KeyList`` / ``ThresholdKey`` form (consensus).  Children are returned
    in encoded order; nested composites are returned undecoded.
    """
    data = unhex(encoded) if isinstance(encoded, str) else encoded
    if not data:
        return DecodedKeyList(())
    tag = data[0]

    if tag in ((_KEY_LIST << 3) | _WIRE_LEN, (_KEY_THRESHOLD << 3) | _WIRE_LEN):
        fields = list(_iter_fields(data))
        if len(fields) != 1:
            raise KeyDecodeError("Key container holds more than one key")
        field_no, _, body = fields[0]
        if field_no == _KEY_LIST:
            return DecodedKeyList(_decode_key_list_body(body))
        return _decode_threshold_body(body)

    if tag == (_KEYLIST_KEYS << 3) | _WIRE_LEN:
        return DecodedKeyList(_decode_key_list_body(data))
    if tag == (_THRESHOLD_THRESHOLD << 3) | _WIRE_VARINT:
        return _decode_threshold_body(data)
    raise KeyDecodeError(f"unrecognised key container tag 0x{tag:02x}")


def unwrap_key_container(encoded: str) -> str:
    """Strip the outer ``Key`` from a wrapped key list / threshold key.

    Returns the bare ``KeyList`` / ``ThresholdKey`` hex, the form consensus
    reports.  Anything else is returned unchanged.
    """
    data = unhex(encoded)
    if not data or data[0] not in ((_KEY_LIST << 3) | _WIRE_LEN, (_KEY_THRESHOLD << 3) | _WIRE_LEN):
        return encoded
    fields = list(_iter_fields(data))
    if len(fields) != 1:
        raise KeyDecodeError("Key container holds more than one key")
    return fields[0][2].hex()


# ═══════════════════════════════════════════════════════════════════
#  Views and comparison
# ═══════════════════════════════════════════════════════════════════

def to_raw_view(encoded: str) -> RawKeyView:
    """Best-effort classification of any key encoding seen on the wire."""
    data = unhex(encoded)
    for algorithm, (prefix, length) in _PUBLIC.items():
        if len(data) == len(prefix) + length and data.startswith(prefix):
            return RawKeyView(_KIND_OF[algorithm], data[len(prefix):])
    try:
        kind = _container_kind(data)
        decoded = decode_list_keys(data)
    except KeyDecodeError:
        pass
    else:
        if kind is KeyKind.KEY_LIST and not decoded.keys:
            # "3200" (wrapped) and "" (bare) are the same empty list
            return RawKeyView(KeyKind.KEY_LIST, b"")
        return RawKeyView(kind, data)
    if len(data) == ECDSA_SECP256K1_PUBLIC_LEN and data[0] in (2, 3):
        return RawKeyView(KeyKind.ECDSA_SECP256K1, data)
    if len(data) == ED25519_KEY_LEN:
        return RawKeyView(KeyKind.ED25519, data)
    raise KeyDecodeError(f"unrecognised key encoding ({len(data)} bytes)")


def raw_view_from_mirror(mirror_key: dict | None) -> RawKeyView | None:
    """Convert a mirror REST key object (``{"_type", "key"}``) to a view."""
    if mirror_key is None:
        return None
    key_type = mirror_key.get("_type")
    key = mirror_key.get("key")
    if key is None:
        raise KeyDecodeError(f"mirror key object without key material: {mirror_key!r}")
    if key_type == "ED25519":
        return strip_prefix(key, KeyAlgorithm.ED25519)
    if key_type == "ECDSA_SECP256K1":
        return strip_prefix(key, KeyAlgorithm.ECDSA_SECP256K1)
    if key_type == "ProtobufEncoded":
        return to_raw_view(key)
    raise KeyDecodeError(f"unknown mirror key type {key_type!r}")


def suffix_equal(a: bytes, b: bytes) -> bool:
    """True when the shorter of *a* / *b* equals the tail of the longer."""
    if not a or not b:
        return a == b
    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    return longer.endswith(shorter)


def views_match(a: RawKeyView | None, b: RawKeyView | None) -> bool:
    if a is None or b is None:
        return a is b
    if a.kind is not b.kind:
        return False
    return suffix_equal(a.raw, b.raw)


def keys_match(a: str, b: str, algorithm: KeyAlgorithm | None = None) -> bool:
    """Compare two key encodings by the suffix rule."""
    if algorithm is not None:
        return views_match(strip_prefix(a, algorithm), strip_prefix(b, algorithm))
    return views_match(to_raw_view(a), to_raw_view(b))
