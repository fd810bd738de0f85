"""
Transaction signing utilities for P2PKH inputs.

The sighash flavour is an explicit policy chosen from the network parameters.
Fork-id networks sign the legacy digest under hash type 0x41 and serialize the
compact (r, s) pair to DER locally.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from coincurve import PrivateKey

from avnwallet.config import NetworkParams
from avnwallet.constants import SIGHASH_ALL, SIGHASH_ALL_FORKID
from avnwallet.errors import SigningFailure
from avnwallet.wallet.keys import WalletKey
from avnwallet.wallet.transaction import Transaction, legacy_signature_digest, push_data


def _der_integer(value: bytes) -> bytes:
    stripped = value.lstrip(b"\x00") or b"\x00"
    if stripped[0] & 0x80:
        stripped = b"\x00" + stripped
    return b"\x02" + bytes([len(stripped)]) + stripped


def der_encode_signature(r: bytes, s: bytes) -> bytes:
    """
    DER-encode a 32-byte (r, s) pair.

    Each integer has leading zero bytes stripped (keeping at least one) and gets a
    0x00 prefix when its high bit is set, so it stays positive.
    """
    if len(r) != 32 or len(s) != 32:
        raise SigningFailure("r and s must be 32 bytes each")
    body = _der_integer(r) + _der_integer(s)
    return b"\x30" + bytes([len(body)]) + body


class SighashPolicy(ABC):
    hash_type: int

    @abstractmethod
    def sign_digest(self, private_key: PrivateKey, digest: bytes) -> bytes:
        """Return the DER signature over a precomputed digest (no hash-type byte)."""

    def sign(self, private_key: PrivateKey, digest: bytes) -> bytes:
        return self.sign_digest(private_key, digest) + bytes([self.hash_type])


class StandardSighash(SighashPolicy):
    """Plain SIGHASH_ALL; coincurve already produces DER."""

    hash_type = SIGHASH_ALL

    def sign_digest(self, private_key: PrivateKey, digest: bytes) -> bytes:
        # Digest is already SHA256d, hasher=None skips hashing
        return private_key.sign(digest, hasher=None)


class ForkIdSighash(SighashPolicy):
    """SIGHASH_ALL | SIGHASH_FORKID with locally DER-encoded (r, s)."""

    hash_type = SIGHASH_ALL_FORKID

    def sign_digest(self, private_key: PrivateKey, digest: bytes) -> bytes:
        compact = private_key.sign_recoverable(digest, hasher=None)
        return der_encode_signature(compact[:32], compact[32:64])


def policy_for_network(params: NetworkParams) -> SighashPolicy:
    if params.fork_id:
        return ForkIdSighash()
    return StandardSighash()


@dataclass
class SigningContext:
    key: WalletKey
    params: NetworkParams
    policy: SighashPolicy

    @classmethod
    def for_key(cls, key: WalletKey) -> SigningContext:
        return cls(key=key, params=key.params, policy=policy_for_network(key.params))


def build_p2pkh_script_sig(signature: bytes, pubkey: bytes) -> bytes:
    """<sig+hashtype> <pubkey>"""
    return push_data(signature) + push_data(pubkey)


def sign_p2pkh_input(
    tx: Transaction,
    input_index: int,
    prev_script: bytes,
    context: SigningContext,
) -> bytes:
    """Sign one P2PKH input and return its script-sig.

    Args:
        tx: The unsigned transaction (other inputs' script-sigs are ignored)
        input_index: Index of the input to sign
        prev_script: scriptPubKey of the output being spent
        context: Key and sighash policy to sign with

    Returns:
        The script-sig pushing the signature and the public key
    """
    try:
        digest = legacy_signature_digest(tx, input_index, prev_script, context.policy.hash_type)
        signature = context.policy.sign(context.key.private_key, digest)
    except SigningFailure:
        raise
    except (IndexError, ValueError) as e:
        raise SigningFailure(f"Failed to sign input {input_index}: {e}") from e

    return build_p2pkh_script_sig(signature, context.key.public_key_bytes)
