"""
Signing keys and Wallet Import Format.
"""

from __future__ import annotations

import base58
from coincurve import PrivateKey

from avnwallet.config import AVIAN_MAINNET, NetworkParams
from avnwallet.wallet.address import hash160, pubkey_to_p2pkh_address


def encode_wif(secret: bytes, params: NetworkParams = AVIAN_MAINNET, compressed: bool = True) -> str:
    if len(secret) != 32:
        raise ValueError(f"Invalid private key length: {len(secret)}")
    payload = bytes([params.wif]) + secret
    if compressed:
        payload += b"\x01"
    return base58.b58encode_check(payload).decode("ascii")


def decode_wif(wif: str, params: NetworkParams = AVIAN_MAINNET) -> tuple[bytes, bool]:
    """Return (secret, compressed) for a WIF string."""
    try:
        decoded = base58.b58decode_check(wif)
    except ValueError as e:
        raise ValueError("Invalid WIF checksum") from e

    if decoded[0] != params.wif:
        raise ValueError(f"Invalid WIF version {decoded[0]:#x} for {params.name}")

    if len(decoded) == 34 and decoded[33] == 0x01:
        return decoded[1:33], True
    if len(decoded) == 33:
        return decoded[1:], False

    raise ValueError(f"Invalid WIF length: {len(decoded)}")


class WalletKey:
    """
    A single-address signing key.

    Wraps a coincurve PrivateKey together with the network it belongs to so the
    address and WIF forms are always derived under the right version bytes.
    """

    def __init__(
        self,
        private_key: PrivateKey,
        params: NetworkParams = AVIAN_MAINNET,
        compressed: bool = True,
    ):
        self._private_key = private_key
        self.params = params
        self.compressed = compressed

    @classmethod
    def from_wif(cls, wif: str, params: NetworkParams = AVIAN_MAINNET) -> WalletKey:
        secret, compressed = decode_wif(wif, params)
        return cls(PrivateKey(secret), params, compressed)

    @classmethod
    def from_secret(cls, secret: bytes, params: NetworkParams = AVIAN_MAINNET) -> WalletKey:
        return cls(PrivateKey(secret), params)

    @property
    def private_key(self) -> PrivateKey:
        return self._private_key

    @property
    def public_key_bytes(self) -> bytes:
        return self._private_key.public_key.format(compressed=self.compressed)

    @property
    def pubkey_hash(self) -> bytes:
        return hash160(self.public_key_bytes)

    @property
    def address(self) -> str:
        return pubkey_to_p2pkh_address(self.public_key_bytes, self.params)

    def to_wif(self) -> str:
        return encode_wif(self._private_key.secret, self.params, self.compressed)
