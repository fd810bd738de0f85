"""
ElectrumX blockchain backend.

Speaks newline-delimited JSON-RPC over TCP or TLS using asyncio streams. One
request is in flight at a time; subscription notifications are skipped.
"""

from __future__ import annotations

import asyncio
import json
import ssl
from typing import Any

from loguru import logger

from avnwallet.backends.base import BlockchainBackend
from avnwallet.config import AVIAN_MAINNET, NetworkParams
from avnwallet.errors import BackendError, BroadcastRejected
from avnwallet.wallet.address import address_to_scripthash, address_to_scriptpubkey
from avnwallet.wallet.models import UTXO, HistoryItem

DEFAULT_TIMEOUT = 30.0
MAX_LINE_SIZE = 4 * 1024 * 1024
CLIENT_NAME = "avnwallet"
PROTOCOL_VERSION = "1.4"


class ElectrumBackend(BlockchainBackend):
    def __init__(
        self,
        host: str,
        port: int = 50002,
        use_ssl: bool = True,
        verify_ssl: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        params: NetworkParams = AVIAN_MAINNET,
    ):
        self.host = host
        self.port = port
        self.use_ssl = use_ssl
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.params = params
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._lock = asyncio.Lock()
        self._request_id = 0

    def _ssl_context(self) -> ssl.SSLContext | None:
        if not self.use_ssl:
            return None
        context = ssl.create_default_context()
        if not self.verify_ssl:
            # Public ElectrumX servers commonly run self-signed certificates
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    async def _connect(self) -> None:
        logger.debug(f"Connecting to ElectrumX {self.host}:{self.port} (ssl={self.use_ssl})")
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.host, self.port, ssl=self._ssl_context(), limit=MAX_LINE_SIZE
                ),
                timeout=self.timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise BackendError(f"Cannot connect to {self.host}:{self.port}: {e}") from e

        await self._request_unlocked("server.version", [CLIENT_NAME, PROTOCOL_VERSION])
        logger.info(f"Connected to ElectrumX {self.host}:{self.port}")

    async def _request_unlocked(self, method: str, params: list[Any]) -> Any:
        assert self._reader is not None and self._writer is not None

        self._request_id += 1
        request_id = self._request_id
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}

        self._writer.write(json.dumps(payload).encode("utf-8") + b"\n")
        await self._writer.drain()

        while True:
            try:
                line = await asyncio.wait_for(self._reader.readline(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                await self._disconnect()
                raise BackendError(f"ElectrumX call timed out: {method}") from e

            if not line:
                await self._disconnect()
                raise BackendError(f"Connection closed during {method}")

            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                raise BackendError(f"Invalid JSON from server: {e}") from e

            # Notifications carry no id
            if data.get("id") != request_id:
                continue

            if data.get("error"):
                error = data["error"]
                message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                raise BackendError(f"ElectrumX error in {method}: {message}")

            return data.get("result")

    async def _request(self, method: str, params: list[Any] | None = None) -> Any:
        async with self._lock:
            if self._writer is None or self._writer.is_closing():
                await self._connect()
            return await self._request_unlocked(method, params or [])

    async def _disconnect(self) -> None:
        writer, self._reader, self._writer = self._writer, None, None
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ssl.SSLError) as e:
                logger.debug(f"Error while closing ElectrumX connection: {e}")

    async def get_utxos(self, address: str) -> list[UTXO]:
        scripthash = address_to_scripthash(address, self.params)
        result = await self._request("blockchain.scripthash.listunspent", [scripthash])
        script_hex = address_to_scriptpubkey(address, self.params).hex()

        utxos = []
        for item in result or []:
            height = item.get("height") or 0
            utxos.append(
                UTXO(
                    txid=item["tx_hash"],
                    vout=item["tx_pos"],
                    value=int(item["value"]),
                    address=address,
                    scriptpubkey=script_hex,
                    height=height if height > 0 else None,
                )
            )
        logger.debug(f"Found {len(utxos)} UTXOs for {address}")
        return utxos

    async def get_block_height(self) -> int:
        header = await self._request("blockchain.headers.subscribe")
        return int(header["height"])

    async def get_transaction(self, txid: str, verbose: bool = False) -> Any:
        return await self._request("blockchain.transaction.get", [txid, verbose])

    async def broadcast_transaction(self, tx_hex: str) -> str:
        try:
            txid = await self._request("blockchain.transaction.broadcast", [tx_hex])
        except BackendError as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise BroadcastRejected(str(e), tx_hex) from e
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def get_transaction_history(self, address: str) -> list[HistoryItem]:
        scripthash = address_to_scripthash(address, self.params)
        result = await self._request("blockchain.scripthash.get_history", [scripthash])
        history = []
        for item in result or []:
            height = item.get("height") or 0
            history.append(HistoryItem(tx_hash=item["tx_hash"], height=height if height > 0 else None))
        return history

    async def close(self) -> None:
        async with self._lock:
            await self._disconnect()
