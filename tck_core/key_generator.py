"""
Materialise key specifications against the backend.

Post-order walk over a :data:`~tck_core.keys.KeySpec`:

  - fresh leaf   -> one ``generateKey`` call for a private key; the public
                    key is derived locally
  - fresh public -> one ``generateKey`` call for a public key, no signing
                    material
  - private leaf -> public key derived locally, private key signs
  - public leaf  -> used as is, contributes no signing material
  - key list     -> children generated in order, container assembled
                    locally; signing keys concatenated (no dedup)

Any failure aborts the whole generation; no partial result is returned.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tck_core.context import ScenarioContext, label_of
from tck_core.crypto_keys import public_key_from_private
from tck_core.key_codec import encode_key_list, leaf_key_message, strip_prefix, unhex
from tck_core.keys import (
    EVM_ADDRESS_TYPE,
    GeneratedKey,
    KeyAlgorithm,
    KeyList,
    KeyMaterialKind,
    KeySpec,
    SingleKey,
    private_key_type,
    public_key_type,
)

if TYPE_CHECKING:
    from tck_core.gateway import RequestGateway

logger = logging.getLogger("tck_keys")


class KeySpecGenerator:
    """Turns key specs into ``(encoded key, signing keys)`` pairs."""

    def __init__(self, gateway: RequestGateway):
        self.gateway = gateway

    async def generate_private_key(
        self, algorithm: KeyAlgorithm, ctx: ScenarioContext | None = None,
    ) -> str:
        result = await self.gateway.call(
            "generateKey", {"type": private_key_type(algorithm)}, ctx,
        )
        return result["key"]

    async def generate_evm_address(
        self, from_key: str | None = None, ctx: ScenarioContext | None = None,
    ) -> str:
        """Ask the backend for an EVM address, derived from *from_key* if given."""
        params: dict[str, str] = {"type": EVM_ADDRESS_TYPE}
        if from_key is not None:
            params["fromKey"] = from_key
        result = await self.gateway.call("generateKey", params, ctx)
        return result["key"]

    async def generate(self, spec: KeySpec, ctx: ScenarioContext | None = None) -> GeneratedKey:
        generated, _ = await self._generate(spec, ctx)
        logger.debug("[%s] generated key with %d signing key(s)",
                     label_of(ctx), len(generated.signing_keys))
        return generated

    async def _generate(
        self, spec: KeySpec, ctx: ScenarioContext | None,
    ) -> tuple[GeneratedKey, bytes]:
        """Return the generated key and its protobuf ``Key`` message."""
        if isinstance(spec, SingleKey):
            generated = await self._generate_single(spec, ctx)
            return generated, leaf_key_message(generated.encoded, spec.algorithm)

        if isinstance(spec, KeyList):
            messages: list[bytes] = []
            signing: list[str] = []
            for child in spec.children:
                child_key, child_message = await self._generate(child, ctx)
                messages.append(child_message)
                signing.extend(child_key.signing_keys)
            encoded = encode_key_list(messages, spec.threshold)
            return GeneratedKey(encoded, tuple(signing)), unhex(encoded)

        raise TypeError(f"Not a key spec: {spec!r}")

    async def _generate_single(self, spec: SingleKey, ctx: ScenarioContext | None) -> GeneratedKey:
        if spec.material is KeyMaterialKind.FRESH:
            private = await self.generate_private_key(spec.algorithm, ctx)
            return GeneratedKey(public_key_from_private(private, spec.algorithm), (private,))

        if spec.material is KeyMaterialKind.FRESH_PUBLIC:
            result = await self.gateway.call(
                "generateKey", {"type": public_key_type(spec.algorithm)}, ctx,
            )
            return GeneratedKey(result["key"], ())

        if spec.material is KeyMaterialKind.PRIVATE:
            return GeneratedKey(public_key_from_private(spec.value, spec.algorithm), (spec.value,))

        # validate the supplied public key before it is embedded anywhere
        strip_prefix(spec.value, spec.algorithm)
        return GeneratedKey(spec.value, ())
