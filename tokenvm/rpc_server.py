"""JSON-RPC 2.0 service that answers queries about token VM state."""

from __future__ import annotations

import base64
import dataclasses
import hashlib
import json
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from tokenvm.address import address, parse_address
from tokenvm.errors import AssetNotFoundError, TxNotFoundError
from tokenvm.storage import ID_LEN, AssetRecord, TransactionRecord

JSON_RPC_ENDPOINT = "/tokenapi"
ORDERS_TO_SEND = 128

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000

_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {c: i for i, c in enumerate(_B58_ALPHABET)}
_CHECKSUM_LEN = 4


def format_id(raw: bytes) -> str:
    """Render a 32-byte identifier as checksummed base58 text."""
    raw = bytes(raw)
    if len(raw) != ID_LEN:
        raise ValueError(f"id must be {ID_LEN} bytes, got {len(raw)}")
    data = raw + hashlib.sha256(raw).digest()[-_CHECKSUM_LEN:]
    num = int.from_bytes(data, "big")
    chars: list[str] = []
    while num:
        num, rem = divmod(num, 58)
        chars.append(_B58_ALPHABET[rem])
    leading = len(data) - len(data.lstrip(b"\x00"))
    return "1" * leading + "".join(reversed(chars))


def parse_id(text: str) -> bytes:
    """Decode checksummed base58 text into a 32-byte identifier."""
    if not isinstance(text, str):
        raise ValueError(f"id must be a string, got {type(text).__name__}")
    num = 0
    for char in text:
        try:
            num = num * 58 + _B58_INDEX[char]
        except KeyError:
            raise ValueError(f"invalid base58 character: {char!r}") from None
    leading = len(text) - len(text.lstrip("1"))
    body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    data = b"\x00" * leading + body
    if len(data) != ID_LEN + _CHECKSUM_LEN:
        raise ValueError(f"invalid id length: {len(data)} bytes with checksum")
    raw, checksum = data[:-_CHECKSUM_LEN], data[-_CHECKSUM_LEN:]
    if hashlib.sha256(raw).digest()[-_CHECKSUM_LEN:] != checksum:
        raise ValueError("invalid id checksum")
    return raw


class Controller(Protocol):
    """What the service needs from the running VM."""

    def genesis(self) -> Any: ...

    def get_transaction(self, tx_id: bytes) -> TransactionRecord | None: ...

    def get_asset_from_state(self, asset: bytes) -> AssetRecord | None: ...

    def get_balance_from_state(self, public_key: bytes, asset: bytes) -> int: ...

    def orders(self, pair: str, limit: int) -> list[Any]: ...

    def get_loan_from_state(self, asset: bytes, destination: bytes) -> int: ...


class _Fault(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _id_arg(args: Mapping[str, Any], key: str) -> bytes:
    value = args.get(key)
    if value is None:
        return bytes(ID_LEN)
    try:
        return parse_id(value)
    except ValueError as exc:
        raise _Fault(INVALID_PARAMS, f"invalid {key}: {exc}") from None


def _decode_request(payload: bytes | str | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(payload, Mapping):
        return payload
    try:
        request = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as exc:
        raise _Fault(PARSE_ERROR, f"rpc: parse error: {exc}") from None
    if not isinstance(request, dict):
        raise _Fault(INVALID_REQUEST, "rpc: request must be an object")
    return request


def _params(raw: Any) -> Mapping[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, list) and len(raw) == 1:
        raw = raw[0]
    if not isinstance(raw, Mapping):
        raise _Fault(INVALID_PARAMS, "rpc: params must be an object")
    return raw


def _error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "error": {"code": code, "message": message, "data": None},
        "id": request_id,
    }


class JSONRPCServer:
    """Answers token VM queries; usable directly or as a WSGI application."""

    def __init__(self, controller: Controller, hrp: str) -> None:
        self._controller = controller
        self._hrp = hrp
        self._methods: dict[str, Callable[[Mapping[str, Any]], dict[str, Any]]] = {
            "genesis": self.genesis,
            "tx": self.tx,
            "asset": self.asset,
            "balance": self.balance,
            "orders": self.orders,
            "loan": self.loan,
        }

    def genesis(self, args: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return {"genesis": _jsonable(self._controller.genesis())}

    def tx(self, args: Mapping[str, Any]) -> dict[str, Any]:
        record = self._controller.get_transaction(_id_arg(args, "txId"))
        if record is None:
            raise TxNotFoundError()
        return {"timestamp": record.timestamp, "success": record.success, "units": record.units}

    def asset(self, args: Mapping[str, Any]) -> dict[str, Any]:
        record = self._controller.get_asset_from_state(_id_arg(args, "asset"))
        if record is None:
            raise AssetNotFoundError()
        return {
            "metadata": base64.b64encode(record.metadata).decode("ascii"),
            "supply": record.supply,
            "owner": address(record.owner, self._hrp),
            "warp": record.warp,
        }

    def balance(self, args: Mapping[str, Any]) -> dict[str, Any]:
        public_key = parse_address(args.get("address") or "", self._hrp)
        amount = self._controller.get_balance_from_state(public_key, _id_arg(args, "asset"))
        return {"amount": amount}

    def orders(self, args: Mapping[str, Any]) -> dict[str, Any]:
        pair = args.get("pair") or ""
        return {"orders": _jsonable(self._controller.orders(pair, ORDERS_TO_SEND))}

    def loan(self, args: Mapping[str, Any]) -> dict[str, Any]:
        amount = self._controller.get_loan_from_state(
            _id_arg(args, "asset"), _id_arg(args, "destination")
        )
        return {"amount": amount}

    def _resolve(self, name: Any) -> Callable[[Mapping[str, Any]], dict[str, Any]]:
        if not isinstance(name, str) or "." not in name:
            raise _Fault(METHOD_NOT_FOUND, f"rpc: service/method request ill-formed: {name!r}")
        method = name.rsplit(".", 1)[1].lower()
        try:
            return self._methods[method]
        except KeyError:
            raise _Fault(METHOD_NOT_FOUND, f"rpc: can't find method {name!r}") from None

    def handle(self, payload: bytes | str | Mapping[str, Any]) -> dict[str, Any]:
        """Process one JSON-RPC request and return the response object."""
        request_id = None
        try:
            request = _decode_request(payload)
            request_id = request.get("id")
            method = self._resolve(request.get("method"))
            result = method(_params(request.get("params")))
        except _Fault as fault:
            return _error(request_id, fault.code, fault.message)
        except Exception as exc:  # handler failures are reported to the caller
            return _error(request_id, SERVER_ERROR, str(exc))
        return {"jsonrpc": "2.0", "result": result, "id": request_id}

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> list[bytes]:
        method = environ.get("REQUEST_METHOD", "GET")
        if method != "POST":
            body = f"rpc: POST method required, received {method}".encode()
            start_response(
                "405 Method Not Allowed",
                [("Content-Type", "text/plain; charset=utf-8"), ("Content-Length", str(len(body)))],
            )
            return [body]
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        raw = environ["wsgi.input"].read(length) if length > 0 else b""
        body = json.dumps(self.handle(raw)).encode("utf-8")
        start_response(
            "200 OK",
            [("Content-Type", "application/json; charset=utf-8"), ("Content-Length", str(len(body)))],
        )
        return [body]