"""
Raw transaction serialization, parsing and signature digests.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field, replace

from avnwallet.constants import (
    SEQUENCE_FINAL,
    SIGHASH_ALL,
    SIGHASH_ANYONECANPAY,
    TX_LOCKTIME,
    TX_VERSION,
)


class TransactionParseError(ValueError):
    pass


@dataclass
class TxIn:
    txid: str  # display (big-endian) hex
    vout: int
    script_sig: bytes = b""
    sequence: int = SEQUENCE_FINAL

    @property
    def is_coinbase(self) -> bool:
        return self.txid == "00" * 32 and self.vout == 0xFFFFFFFF


@dataclass
class TxOut:
    value: int
    script_pubkey: bytes


@dataclass
class Transaction:
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)
    version: int = TX_VERSION
    locktime: int = TX_LOCKTIME

    def serialize(self) -> bytes:
        """Serialize without witness data."""
        result = struct.pack("<I", self.version)

        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += serialize_outpoint(inp.txid, inp.vout)
            result += encode_varint(len(inp.script_sig))
            result += inp.script_sig
            result += struct.pack("<I", inp.sequence)

        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += struct.pack("<Q", out.value)
            result += encode_varint(len(out.script_pubkey))
            result += out.script_pubkey

        result += struct.pack("<I", self.locktime)
        return result

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        return hash256(self.serialize())[::-1].hex()

    @classmethod
    def from_hex(cls, tx_hex: str) -> Transaction:
        try:
            tx_bytes = bytes.fromhex(tx_hex)
        except ValueError as e:
            raise TransactionParseError(f"Transaction is not valid hex: {e}") from e
        return deserialize_transaction(tx_bytes)


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        value = int.from_bytes(data[offset : offset + 2], "little")
        return value, offset + 2
    if first == 0xFE:
        value = int.from_bytes(data[offset : offset + 4], "little")
        return value, offset + 4
    value = int.from_bytes(data[offset : offset + 8], "little")
    return value, offset + 8


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """Serialize outpoint (txid:vout)."""
    # txid is in display format (big-endian), raw transactions carry it reversed
    txid_bytes = bytes.fromhex(txid)[::-1]
    if len(txid_bytes) != 32:
        raise ValueError(f"Invalid txid length: {txid}")
    return txid_bytes + struct.pack("<I", vout)


def push_data(data: bytes) -> bytes:
    """Minimal script push for data up to 75 bytes, PUSHDATA1/2 above."""
    length = len(data)
    if length < 0x4C:
        return bytes([length]) + data
    if length <= 0xFF:
        return b"\x4c" + bytes([length]) + data
    return b"\x4d" + length.to_bytes(2, "little") + data


def deserialize_transaction(tx_bytes: bytes) -> Transaction:
    """Parse a raw transaction. Witness data, if present, is skipped."""
    try:
        offset = 0
        version = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
        offset += 4

        has_witness = False
        if tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
            has_witness = True
            offset += 2

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[TxIn] = []

        for _ in range(input_count):
            txid = tx_bytes[offset : offset + 32][::-1].hex()
            offset += 32

            vout = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
            offset += 4

            script_len, offset = read_varint(tx_bytes, offset)
            script_sig = tx_bytes[offset : offset + script_len]
            offset += script_len

            sequence = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
            offset += 4

            inputs.append(TxIn(txid, vout, script_sig, sequence))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[TxOut] = []

        for _ in range(output_count):
            value = struct.unpack("<Q", tx_bytes[offset : offset + 8])[0]
            offset += 8

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            outputs.append(TxOut(value, script))

        if has_witness:
            for _ in range(input_count):
                stack_count, offset = read_varint(tx_bytes, offset)
                for _ in range(stack_count):
                    item_len, offset = read_varint(tx_bytes, offset)
                    offset += item_len

        locktime = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
        offset += 4

        if offset != len(tx_bytes):
            raise TransactionParseError(f"{len(tx_bytes) - offset} trailing bytes")

        return Transaction(inputs, outputs, version, locktime)

    except TransactionParseError:
        raise
    except (IndexError, struct.error) as e:
        raise TransactionParseError(f"Failed to parse transaction: {e}") from e


def legacy_signature_digest(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    hash_type: int,
) -> bytes:
    """
    Compute the pre-segwit signature digest.

    All input scripts are blanked, the signed input carries the previous output
    script, and the full 4-byte hash type (fork id bit included) is appended
    before double hashing. Only the ALL base type is supported.
    """
    if input_index >= len(tx.inputs):
        raise IndexError("Input index out of range")
    if hash_type & 0x1F != SIGHASH_ALL:
        raise ValueError(f"Unsupported sighash base type: {hash_type:#x}")

    inputs = [
        replace(inp, script_sig=script_code if i == input_index else b"")
        for i, inp in enumerate(tx.inputs)
    ]
    if hash_type & SIGHASH_ANYONECANPAY:
        inputs = [inputs[input_index]]

    stripped = Transaction(inputs, list(tx.outputs), tx.version, tx.locktime)
    return hash256(stripped.serialize() + struct.pack("<I", hash_type))
