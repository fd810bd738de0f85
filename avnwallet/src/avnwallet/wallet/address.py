"""
Avian address generation utilities.

Only legacy Base58Check addresses exist on this ledger (no bech32).
"""

from __future__ import annotations

import hashlib

import base58

from avnwallet.config import AVIAN_MAINNET, NetworkParams

# OP_DUP OP_HASH160 <20> ... OP_EQUALVERIFY OP_CHECKSIG
P2PKH_PREFIX = bytes([0x76, 0xA9, 0x14])
P2PKH_SUFFIX = bytes([0x88, 0xAC])
# OP_HASH160 <20> ... OP_EQUAL
P2SH_PREFIX = bytes([0xA9, 0x14])
P2SH_SUFFIX = bytes([0x87])


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def hash_to_address(payload: bytes, version: int) -> str:
    """Base58Check-encode a 20-byte hash under a version byte."""
    if len(payload) != 20:
        raise ValueError(f"Invalid hash length: {len(payload)}")
    return base58.b58encode_check(bytes([version]) + payload).decode("ascii")


def decode_address(address: str) -> tuple[int, bytes]:
    """Return (version, hash160) for a Base58Check address."""
    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise ValueError(f"Invalid address checksum: {address}") from e

    if len(decoded) != 21:
        raise ValueError(f"Invalid address length: {address}")
    return decoded[0], decoded[1:]


def pubkey_to_p2pkh_address(pubkey: bytes, params: NetworkParams = AVIAN_MAINNET) -> str:
    """Convert a public key (compressed or not) to a P2PKH address."""
    if len(pubkey) not in (33, 65):
        raise ValueError(f"Invalid public key length: {len(pubkey)}")
    return hash_to_address(hash160(pubkey), params.pubkey_hash)


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    return P2PKH_PREFIX + pubkey_hash + P2PKH_SUFFIX


def address_to_scriptpubkey(address: str, params: NetworkParams = AVIAN_MAINNET) -> bytes:
    """
    Convert an address to its output script.

    Supports P2PKH and P2SH under the given network's version bytes.
    """
    version, payload = decode_address(address)

    if version == params.pubkey_hash:
        return p2pkh_script(payload)
    if version == params.script_hash:
        return P2SH_PREFIX + payload + P2SH_SUFFIX

    raise ValueError(f"Unknown address version {version:#x} for {params.name}")


def scriptpubkey_to_address(script: bytes, params: NetworkParams = AVIAN_MAINNET) -> str | None:
    """Convert an output script to an address, None for non-standard scripts."""
    if len(script) == 25 and script[:3] == P2PKH_PREFIX and script[23:] == P2PKH_SUFFIX:
        return hash_to_address(script[3:23], params.pubkey_hash)
    if len(script) == 23 and script[:2] == P2SH_PREFIX and script[22:] == P2SH_SUFFIX:
        return hash_to_address(script[2:22], params.script_hash)
    return None


def is_valid_address(address: str, params: NetworkParams = AVIAN_MAINNET) -> bool:
    try:
        version, _ = decode_address(address)
    except ValueError:
        return False
    return version in (params.pubkey_hash, params.script_hash)


def address_to_scripthash(address: str, params: NetworkParams = AVIAN_MAINNET) -> str:
    """Electrum script hash: reversed SHA256 of the output script, hex."""
    script = address_to_scriptpubkey(address, params)
    return hashlib.sha256(script).digest()[::-1].hex()
