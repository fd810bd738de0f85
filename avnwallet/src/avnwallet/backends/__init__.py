"""
Blockchain backend implementations.

Available backends:
- ElectrumBackend: ElectrumX server over TCP/TLS
- NodeRPCBackend: Full node JSON-RPC with the address index enabled
"""

from avnwallet.backends.base import BlockchainBackend
from avnwallet.backends.electrum import ElectrumBackend
from avnwallet.backends.node_rpc import NodeRPCBackend

__all__ = [
    "BlockchainBackend",
    "ElectrumBackend",
    "NodeRPCBackend",
]
