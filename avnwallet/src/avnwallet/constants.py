"""
Avian network and wallet constants.

Version bytes and sighash flags must match the network bit-for-bit, otherwise
addresses will not round-trip and signatures will be rejected by nodes.
"""

from __future__ import annotations

# Smallest units per coin (1 AVN = 10^8 satoshis)
COIN = 100_000_000

# Base58Check version bytes
P2PKH_VERSION = 0x3C  # addresses start with 'R'
P2SH_VERSION = 0x7A  # addresses start with 'r'
WIF_VERSION = 0x80

# BIP32 extended key version words (xpub/xprv)
BIP32_PUBLIC_VERSION = 0x0488B21E
BIP32_PRIVATE_VERSION = 0x0488ADE4

# BIP44 coin type registered for Avian
BIP44_COIN_TYPE = 921
DEFAULT_DERIVATION_PATH = f"m/44'/{BIP44_COIN_TYPE}'/0'/0/0"

MESSAGE_PREFIX = "\x16Raven Signed Message:\n"

# Signature hash flags
SIGHASH_ALL = 0x01
SIGHASH_FORKID = 0x40
SIGHASH_ANYONECANPAY = 0x80
# Every Avian signature commits to the fork id
SIGHASH_ALL_FORKID = SIGHASH_ALL | SIGHASH_FORKID  # 0x41

# Transaction template
TX_VERSION = 2
TX_LOCKTIME = 0
SEQUENCE_FINAL = 0xFFFFFFFF

# Selection defaults
DEFAULT_FEE = 10_000  # flat fee, 0.0001 AVN
DEFAULT_DUST_THRESHOLD = 1_000  # 0.00001 AVN
DEFAULT_MAX_INPUTS = 20
DEFAULT_MIN_CONFIRMATIONS = 6

# Largest combination the best-fit search tries
BEST_FIT_MAX_COMBINATION_INPUTS = 4

# Placeholder counterparties used by the classifier
COUNTERPARTY_COINBASE = "Coinbase"
COUNTERPARTY_EXTERNAL = "External"
COUNTERPARTY_FEE_BURN = "Fee/Burn"
