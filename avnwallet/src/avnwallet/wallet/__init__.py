"""
Wallet engine: keys, selection, building, signing and classification.
"""
