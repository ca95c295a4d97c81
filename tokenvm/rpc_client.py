"""Client for the token VM JSON-RPC service."""

from __future__ import annotations

import base64
import itertools
import json
import logging
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from tokenvm.errors import AssetNotFoundError, TokenVMError, TxNotFoundError
from tokenvm.rpc_server import JSON_RPC_ENDPOINT, format_id

logger = logging.getLogger(__name__)


class RPCError(TokenVMError):
    """The service answered a request with an error."""

    default_message = "rpc error"

    def __init__(self, message: str | None = None, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


@dataclass(frozen=True)
class TransactionStatus:
    success: bool
    timestamp: int
    units: int


@dataclass(frozen=True)
class AssetInfo:
    metadata: bytes
    supply: int
    owner: str
    warp: bool


class JSONRPCClient:
    """Queries one chain's token API over HTTP."""

    def __init__(
        self,
        uri: str,
        chain_id: bytes,
        service: str,
        *,
        timeout: float = 10.0,
        poll_interval: float = 1.0,
    ) -> None:
        self.uri = uri.removesuffix("/") + JSON_RPC_ENDPOINT
        self.chain_id = bytes(chain_id)
        self.service = service
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._genesis: Any = None
        self._ids = itertools.count(1)

    def _send(self, method: str, params: dict[str, Any] | None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": f"{self.service}.{method}",
            "params": params if params is not None else {},
            "id": next(self._ids),
        }
        request = urllib.request.Request(
            self.uri,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as exc:
            body = exc.read()
            try:
                reply = json.loads(body)
            except ValueError:
                raise RPCError(f"received status code: {exc.code}") from None
        else:
            try:
                reply = json.loads(body)
            except ValueError as exc:
                raise RPCError(f"invalid response: {exc}") from None
        if not isinstance(reply, dict):
            raise RPCError("invalid response: not an object")
        error = reply.get("error")
        if error:
            if isinstance(error, dict):
                raise RPCError(str(error.get("message", "")), error.get("code"), error.get("data"))
            raise RPCError(str(error))
        return reply.get("result") or {}

    def genesis(self) -> Any:
        """Genesis of the chain; fetched once and then remembered."""
        if self._genesis is None:
            self._genesis = self._send("genesis", None).get("genesis")
        return self._genesis

    def tx(self, tx_id: bytes) -> TransactionStatus | None:
        """Status of a transaction, or None if the node does not know it."""
        try:
            result = self._send("tx", {"txId": format_id(tx_id)})
        except RPCError as exc:
            if TxNotFoundError.default_message in str(exc):
                return None
            raise
        return TransactionStatus(
            success=bool(result.get("success")),
            timestamp=int(result.get("timestamp", 0)),
            units=int(result.get("units", 0)),
        )

    def asset(self, asset: bytes) -> AssetInfo | None:
        """Description of an asset, or None if it does not exist."""
        try:
            result = self._send("asset", {"asset": format_id(asset)})
        except RPCError as exc:
            if AssetNotFoundError.default_message in str(exc):
                return None
            raise
        metadata = result.get("metadata")
        return AssetInfo(
            metadata=base64.b64decode(metadata) if metadata else b"",
            supply=int(result.get("supply", 0)),
            owner=str(result.get("owner", "")),
            warp=bool(result.get("warp")),
        )

    def balance(self, addr: str, asset: bytes) -> int:
        result = self._send("balance", {"address": addr, "asset": format_id(asset)})
        return int(result.get("amount", 0))

    def orders(self, pair: str) -> list[Any]:
        result = self._send("orders", {"pair": pair})
        return list(result.get("orders") or [])

    def loan(self, asset: bytes, destination: bytes) -> int:
        result = self._send(
            "loan", {"asset": format_id(asset), "destination": format_id(destination)}
        )
        return int(result.get("amount", 0))

    def _wait(self, check: Callable[[], bool], timeout: float | None) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not check():
            if deadline is None:
                time.sleep(self.poll_interval)
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("timed out waiting for condition")
            time.sleep(min(self.poll_interval, remaining))

    def wait_for_balance(self, addr: str, asset: bytes, minimum: int, timeout: float | None = None) -> None:
        """Block until the balance of ``addr`` reaches ``minimum``."""

        def reached() -> bool:
            if self.balance(addr, asset) >= minimum:
                return True
            logger.info("waiting for %d balance: %s", minimum, addr)
            return False

        self._wait(reached, timeout)

    def wait_for_transaction(self, tx_id: bytes, timeout: float | None = None) -> bool:
        """Block until the transaction is known and return whether it succeeded."""
        found: list[TransactionStatus] = []

        def known() -> bool:
            status = self.tx(tx_id)
            if status is None:
                return False
            found.append(status)
            return True

        self._wait(known, timeout)
        return found[0].success