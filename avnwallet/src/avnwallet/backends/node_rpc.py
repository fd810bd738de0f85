"""
Avian node JSON-RPC blockchain backend.
Requires the node's address index (-addressindex) for UTXO and history calls.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from avnwallet.backends.base import BlockchainBackend
from avnwallet.errors import BackendError, BroadcastRejected
from avnwallet.wallet.models import UTXO, HistoryItem

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 30.0


class NodeRPCBackend(BlockchainBackend):
    """
    Blockchain backend using a full node's RPC interface.
    Does not use the node wallet; UTXOs and history come from the address index.
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:7896",
        rpc_user: str = "",
        rpc_password: str = "",
        timeout: float = DEFAULT_RPC_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.rpc_url = rpc_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout, auth=(rpc_user, rpc_password))
        self._request_id = 0

    async def _rpc_call(self, method: str, params: list | None = None) -> Any:
        """
        Make an RPC call to the node.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            RPC result

        Raises:
            BackendError: On RPC errors and connection/timeout errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "1.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            response = await self.client.post(self.rpc_url, json=payload)
            # Nodes answer RPC errors with HTTP 500 and a JSON body
            if response.status_code != 500:
                response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"RPC call timed out: {method} - {e}")
            raise BackendError(f"RPC call timed out: {method}") from e
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise BackendError(f"RPC call failed: {method}: {e}") from e
        except ValueError as e:
            raise BackendError(f"Invalid RPC response for {method}: {e}") from e

        if data.get("error"):
            error_info = data["error"]
            error_code = error_info.get("code", "unknown")
            error_msg = error_info.get("message", str(error_info))
            raise BackendError(f"RPC error {error_code}: {error_msg}")

        return data.get("result")

    async def get_utxos(self, address: str) -> list[UTXO]:
        result = await self._rpc_call("getaddressutxos", [{"addresses": [address]}])

        utxos = []
        for item in result or []:
            height = item.get("height") or 0
            utxos.append(
                UTXO(
                    txid=item["txid"],
                    vout=item["outputIndex"],
                    value=int(item["satoshis"]),
                    address=item.get("address", address),
                    scriptpubkey=item.get("script", ""),
                    height=height if height > 0 else None,
                )
            )

        logger.debug(f"Found {len(utxos)} UTXOs for {address}")
        return utxos

    async def get_block_height(self) -> int:
        height = await self._rpc_call("getblockcount")
        logger.debug(f"Current block height: {height}")
        return int(height)

    async def get_transaction(self, txid: str, verbose: bool = False) -> Any:
        return await self._rpc_call("getrawtransaction", [txid, verbose])

    async def broadcast_transaction(self, tx_hex: str) -> str:
        try:
            txid = await self._rpc_call("sendrawtransaction", [tx_hex])
        except BackendError as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise BroadcastRejected(f"Broadcast failed: {e}", tx_hex) from e

        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def get_transaction_history(self, address: str) -> list[HistoryItem]:
        deltas = await self._rpc_call("getaddressdeltas", [{"addresses": [address]}])
        mempool = await self._rpc_call("getaddressmempool", [{"addresses": [address]}])

        history: list[HistoryItem] = []
        seen: set[str] = set()

        for delta in sorted(deltas or [], key=lambda d: d.get("height", 0)):
            if delta["txid"] in seen:
                continue
            seen.add(delta["txid"])
            history.append(HistoryItem(tx_hash=delta["txid"], height=delta.get("height")))

        for entry in mempool or []:
            if entry["txid"] in seen:
                continue
            seen.add(entry["txid"])
            history.append(HistoryItem(tx_hash=entry["txid"], height=None))

        return history

    async def close(self) -> None:
        await self.client.aclose()
