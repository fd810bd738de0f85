"""
avnwallet - Avian wallet transaction engine

Provides UTXO selection, fork-id transaction signing and history classification.
"""

__version__ = "0.1.0"
