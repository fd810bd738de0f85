"""
Tests for the ElectrumX backend against an in-memory stream pair.
"""

from __future__ import annotations

import asyncio
import json
from collections import deque
from typing import Any

import pytest

from avnwallet.backends.electrum import ElectrumBackend
from avnwallet.errors import BackendError, BroadcastRejected
from avnwallet.wallet.address import address_to_scripthash, address_to_scriptpubkey


class FakeServer:
    """Answers each JSON-RPC line from a method -> result table."""

    def __init__(self, responses: dict[str, Any]):
        self.responses = responses
        self.requests: list[dict[str, Any]] = []
        self.lines: deque[bytes] = deque()
        self.notify = False
        self.connections = 0

    def handle(self, request: dict[str, Any]) -> None:
        self.requests.append(request)
        method = request["method"]
        if method not in self.responses:
            return  # silence: reader sees EOF
        if self.notify:
            notification = {"jsonrpc": "2.0", "method": "blockchain.headers.subscribe", "params": [{}]}
            self.lines.append(json.dumps(notification).encode() + b"\n")

        response: dict[str, Any] = {"jsonrpc": "2.0", "id": request["id"]}
        result = self.responses[method]
        if isinstance(result, Exception):
            response["error"] = {"code": 1, "message": str(result)}
        else:
            response["result"] = result
        self.lines.append(json.dumps(response).encode() + b"\n")


class FakeReader:
    def __init__(self, server: FakeServer):
        self.server = server

    async def readline(self) -> bytes:
        if not self.server.lines:
            return b""
        return self.server.lines.popleft()


class FakeWriter:
    def __init__(self, server: FakeServer):
        self.server = server
        self.closed = False

    def write(self, data: bytes) -> None:
        self.server.handle(json.loads(data))

    async def drain(self) -> None:
        pass

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass


@pytest.fixture
def server(monkeypatch) -> FakeServer:
    server = FakeServer({"server.version": ["ElectrumX 1.16", "1.4"]})

    async def open_connection(host, port, ssl=None, limit=None):
        server.connections += 1
        return FakeReader(server), FakeWriter(server)

    monkeypatch.setattr(asyncio, "open_connection", open_connection)
    return server


@pytest.fixture
def electrum() -> ElectrumBackend:
    return ElectrumBackend("electrum.example", 50002, use_ssl=False)


class TestElectrumBackend:
    @pytest.mark.asyncio
    async def test_listunspent(self, server, electrum, key):
        server.responses["blockchain.scripthash.listunspent"] = [
            {"tx_hash": "aa" * 32, "tx_pos": 1, "value": 5000, "height": 90},
            {"tx_hash": "bb" * 32, "tx_pos": 0, "value": 700, "height": 0},
        ]

        utxos = await electrum.get_utxos(key.address)

        assert server.requests[0]["method"] == "server.version"
        assert server.requests[1]["params"] == [address_to_scripthash(key.address)]
        assert [(u.txid, u.vout, u.value, u.height) for u in utxos] == [
            ("aa" * 32, 1, 5000, 90),
            ("bb" * 32, 0, 700, None),
        ]
        assert utxos[0].scriptpubkey == address_to_scriptpubkey(key.address).hex()
        assert utxos[0].address == key.address

    @pytest.mark.asyncio
    async def test_block_height_skips_notifications(self, server, electrum):
        server.responses["blockchain.headers.subscribe"] = {"height": 1234, "hex": "00"}
        server.notify = True

        assert await electrum.get_block_height() == 1234

    @pytest.mark.asyncio
    async def test_connection_reused(self, server, electrum):
        server.responses["blockchain.headers.subscribe"] = {"height": 1}
        await electrum.get_block_height()
        await electrum.get_block_height()
        assert server.connections == 1

    @pytest.mark.asyncio
    async def test_verbose_transaction(self, server, electrum):
        server.responses["blockchain.transaction.get"] = {"txid": "cc" * 32, "vin": [], "vout": []}

        result = await electrum.get_transaction("cc" * 32, verbose=True)

        assert result["txid"] == "cc" * 32
        assert server.requests[-1]["params"] == ["cc" * 32, True]

    @pytest.mark.asyncio
    async def test_history_heights(self, server, electrum, key):
        server.responses["blockchain.scripthash.get_history"] = [
            {"tx_hash": "aa" * 32, "height": 10},
            {"tx_hash": "bb" * 32, "height": -1},
        ]

        history = await electrum.get_transaction_history(key.address)

        assert [(h.tx_hash, h.height) for h in history] == [("aa" * 32, 10), ("bb" * 32, None)]

    @pytest.mark.asyncio
    async def test_server_error(self, server, electrum):
        server.responses["blockchain.headers.subscribe"] = RuntimeError("busy")
        with pytest.raises(BackendError, match="busy"):
            await electrum.get_block_height()

    @pytest.mark.asyncio
    async def test_broadcast_rejected(self, server, electrum):
        server.responses["blockchain.transaction.broadcast"] = RuntimeError("bad-txns-inputs-spent")

        with pytest.raises(BroadcastRejected) as exc_info:
            await electrum.broadcast_transaction("0200")

        assert exc_info.value.tx_hex == "0200"
        assert "bad-txns-inputs-spent" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_broadcast(self, server, electrum):
        server.responses["blockchain.transaction.broadcast"] = "dd" * 32
        assert await electrum.broadcast_transaction("0200") == "dd" * 32

    @pytest.mark.asyncio
    async def test_eof_disconnects_and_reconnects(self, server, electrum):
        with pytest.raises(BackendError, match="closed"):
            await electrum.get_block_height()

        server.responses["blockchain.headers.subscribe"] = {"height": 7}
        assert await electrum.get_block_height() == 7
        assert server.connections == 2

    @pytest.mark.asyncio
    async def test_connect_failure(self, monkeypatch, electrum):
        async def refuse(*args, **kwargs):
            raise ConnectionRefusedError("refused")

        monkeypatch.setattr(asyncio, "open_connection", refuse)
        with pytest.raises(BackendError, match="Cannot connect"):
            await electrum.get_block_height()

    @pytest.mark.asyncio
    async def test_close(self, server, electrum):
        server.responses["blockchain.headers.subscribe"] = {"height": 1}
        await electrum.get_block_height()
        await electrum.close()
        assert electrum._writer is None
