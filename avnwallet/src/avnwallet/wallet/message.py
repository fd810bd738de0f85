"""
Signed messages using the network's message prefix.

Signatures are the 65-byte compact recoverable format, base64 encoded, with the
header byte carrying the recovery id and the compressed-key flag.
"""

from __future__ import annotations

import base64
import binascii
import hashlib

from coincurve import PublicKey

from avnwallet.config import AVIAN_MAINNET, NetworkParams
from avnwallet.wallet.address import pubkey_to_p2pkh_address
from avnwallet.wallet.keys import WalletKey
from avnwallet.wallet.transaction import encode_varint


def message_hash(message: str, params: NetworkParams = AVIAN_MAINNET) -> bytes:
    """
    Hash a message using the signed message format.

    Format: SHA256(SHA256(prefix + varint(len) + message))
    """
    prefix = params.message_prefix.encode("utf-8")
    msg_bytes = message.encode("utf-8")
    full_msg = prefix + encode_varint(len(msg_bytes)) + msg_bytes
    return hashlib.sha256(hashlib.sha256(full_msg).digest()).digest()


def sign_message(key: WalletKey, message: str) -> str:
    digest = message_hash(message, key.params)
    recoverable = key.private_key.sign_recoverable(digest, hasher=None)
    rs, recovery_id = recoverable[:64], recoverable[64]

    header = 27 + recovery_id + (4 if key.compressed else 0)
    return base64.b64encode(bytes([header]) + rs).decode("ascii")


def recover_pubkey(message: str, signature_b64: str, params: NetworkParams = AVIAN_MAINNET) -> bytes:
    """Recover the signing public key; raises ValueError on a malformed signature."""
    try:
        sig = base64.b64decode(signature_b64, validate=True)
    except binascii.Error as e:
        raise ValueError("Signature is not valid base64") from e

    if len(sig) != 65:
        raise ValueError(f"Invalid signature length: {len(sig)}")

    flag = sig[0] - 27
    if flag < 0 or flag > 7:
        raise ValueError("Invalid signature flag")
    recovery_id = flag & 0x03
    compressed = bool(flag & 0x04)

    digest = message_hash(message, params)
    pubkey = PublicKey.from_signature_and_message(
        sig[1:] + bytes([recovery_id]), digest, hasher=None
    )
    return pubkey.format(compressed=compressed)


def verify_message(
    address: str, message: str, signature_b64: str, params: NetworkParams = AVIAN_MAINNET
) -> bool:
    try:
        pubkey = recover_pubkey(message, signature_b64, params)
    except Exception:
        return False
    return pubkey_to_p2pkh_address(pubkey, params) == address
