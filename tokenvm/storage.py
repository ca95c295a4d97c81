"""Key layout and value encoding of the token VM state."""

from __future__ import annotations

import struct
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from tokenvm.errors import InvalidBalanceError, NotFoundError

ID_LEN = 32
PUBLIC_KEY_LEN = 32
MAX_UINT64 = (1 << 64) - 1
MAX_UINT16 = (1 << 16) - 1

TX_PREFIX = 0x0

BALANCE_PREFIX = 0x0
ASSET_PREFIX = 0x1
ORDER_PREFIX = 0x2
LOAN_PREFIX = 0x3
HEIGHT_PREFIX = 0x4
INCOMING_WARP_PREFIX = 0x5
OUTGOING_WARP_PREFIX = 0x6

_FAILURE_BYTE = 0x0
_SUCCESS_BYTE = 0x1

_U64 = struct.Struct(">Q")
_TX_VALUE = struct.Struct(">qBQ")
_ORDER_VALUE = struct.Struct(f">{ID_LEN}sQ{ID_LEN}sQQ{PUBLIC_KEY_LEN}s")

ReadState = Callable[[Sequence[bytes]], Sequence["bytes | None"]]
"""Reads many keys at once; missing keys come back as None."""


class Database(Protocol):
    def get_value(self, key: bytes) -> bytes: ...

    def insert(self, key: bytes, value: bytes) -> None: ...

    def remove(self, key: bytes) -> None: ...


class MemoryDatabase:
    """A dictionary-backed key-value store."""

    def __init__(self) -> None:
        self._data: dict[bytes, bytes] = {}

    def get_value(self, key: bytes) -> bytes:
        try:
            return self._data[bytes(key)]
        except KeyError:
            raise NotFoundError() from None

    def insert(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    def remove(self, key: bytes) -> None:
        self._data.pop(bytes(key), None)

    def read_state(self, keys: Sequence[bytes]) -> list[bytes | None]:
        return [self._data.get(bytes(k)) for k in keys]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, (bytes, bytearray)) and bytes(key) in self._data

    def __len__(self) -> int:
        return len(self._data)


@dataclass(frozen=True)
class TransactionRecord:
    timestamp: int
    success: bool
    units: int


@dataclass(frozen=True)
class AssetRecord:
    metadata: bytes
    supply: int
    owner: bytes
    warp: bool


@dataclass(frozen=True)
class OrderRecord:
    in_asset: bytes
    in_tick: int
    out_asset: bytes
    out_tick: int
    remaining: int
    owner: bytes


def _fixed(value: bytes, length: int, name: str) -> bytes:
    value = bytes(value)
    if len(value) != length:
        raise ValueError(f"{name} must be {length} bytes, got {len(value)}")
    return value


def _uint64(value: int, name: str) -> int:
    if not 0 <= value <= MAX_UINT64:
        raise ValueError(f"{name} out of uint64 range: {value}")
    return value


def _get_or_none(db: Database, key: bytes) -> bytes | None:
    try:
        return db.get_value(key)
    except NotFoundError:
        return None


def _decode_u64(value: bytes | None) -> int:
    return 0 if value is None else _U64.unpack_from(value)[0]


# Transactions


def prefix_tx_key(tx_id: bytes) -> bytes:
    """[txPrefix] + [txID]"""
    return bytes([TX_PREFIX]) + _fixed(tx_id, ID_LEN, "tx id")


def store_transaction(db: Database, tx_id: bytes, timestamp: int, success: bool, units: int) -> None:
    value = _TX_VALUE.pack(
        timestamp,
        _SUCCESS_BYTE if success else _FAILURE_BYTE,
        _uint64(units, "units"),
    )
    db.insert(prefix_tx_key(tx_id), value)


def get_transaction(db: Database, tx_id: bytes) -> TransactionRecord | None:
    value = _get_or_none(db, prefix_tx_key(tx_id))
    if value is None:
        return None
    timestamp, flag, units = _TX_VALUE.unpack_from(value)
    return TransactionRecord(timestamp, flag != _FAILURE_BYTE, units)


# Balances


def prefix_balance_key(public_key: bytes, asset: bytes) -> bytes:
    """[balancePrefix] + [address] + [asset]"""
    return (
        bytes([BALANCE_PREFIX])
        + _fixed(public_key, PUBLIC_KEY_LEN, "public key")
        + _fixed(asset, ID_LEN, "asset id")
    )


def get_balance(db: Database, public_key: bytes, asset: bytes) -> int:
    """Balance of an account; zero when no record exists."""
    return _decode_u64(_get_or_none(db, prefix_balance_key(public_key, asset)))


def get_balance_from_state(read_state: ReadState, public_key: bytes, asset: bytes) -> int:
    values = read_state([prefix_balance_key(public_key, asset)])
    return _decode_u64(values[0])


def set_balance(db: Database, public_key: bytes, asset: bytes, balance: int) -> None:
    db.insert(prefix_balance_key(public_key, asset), _U64.pack(_uint64(balance, "balance")))


def delete_balance(db: Database, public_key: bytes, asset: bytes) -> None:
    db.remove(prefix_balance_key(public_key, asset))


def add_balance(db: Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_u64(_get_or_none(db, key))
    new_balance = balance + amount
    if amount < 0 or new_balance > MAX_UINT64:
        raise InvalidBalanceError(
            f"invalid balance: could not add balance (asset={bytes(asset).hex()}, "
            f"bal={balance}, addr={bytes(public_key).hex()}, amount={amount})"
        )
    db.insert(key, _U64.pack(new_balance))


def sub_balance(db: Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_u64(_get_or_none(db, key))
    new_balance = balance - amount
    if amount < 0 or new_balance < 0:
        raise InvalidBalanceError(
            f"invalid balance: could not subtract balance (asset={bytes(asset).hex()}, "
            f"bal={balance}, addr={bytes(public_key).hex()}, amount={amount})"
        )
    if new_balance == 0:
        # An empty balance is removed rather than stored as zero.
        db.remove(key)
    else:
        db.insert(key, _U64.pack(new_balance))


# Assets


def prefix_asset_key(asset: bytes) -> bytes:
    """[assetPrefix] + [asset]"""
    return bytes([ASSET_PREFIX]) + _fixed(asset, ID_LEN, "asset id")


def _decode_asset(value: bytes | None) -> AssetRecord | None:
    if value is None:
        return None
    (metadata_len,) = struct.unpack_from(">H", value)
    offset = 2
    metadata = bytes(value[offset:offset + metadata_len])
    offset += metadata_len
    (supply,) = _U64.unpack_from(value, offset)
    offset += 8
    owner = bytes(value[offset:offset + PUBLIC_KEY_LEN])
    offset += PUBLIC_KEY_LEN
    warp = value[offset] == 0x1
    return AssetRecord(metadata, supply, owner, warp)


def get_asset_from_state(read_state: ReadState, asset: bytes) -> AssetRecord | None:
    values = read_state([prefix_asset_key(asset)])
    return _decode_asset(values[0])


def get_asset(db: Database, asset: bytes) -> AssetRecord | None:
    return _decode_asset(_get_or_none(db, prefix_asset_key(asset)))


def set_asset(
    db: Database,
    asset: bytes,
    metadata: bytes,
    supply: int,
    owner: bytes,
    warp: bool,
) -> None:
    metadata = bytes(metadata)
    if len(metadata) > MAX_UINT16:
        raise ValueError(f"metadata too long: {len(metadata)} bytes")
    value = b"".join(
        (
            struct.pack(">H", len(metadata)),
            metadata,
            _U64.pack(_uint64(supply, "supply")),
            _fixed(owner, PUBLIC_KEY_LEN, "owner"),
            b"\x01" if warp else b"\x00",
        )
    )
    db.insert(prefix_asset_key(asset), value)


def delete_asset(db: Database, asset: bytes) -> None:
    db.remove(prefix_asset_key(asset))


# Orders


def prefix_order_key(tx_id: bytes) -> bytes:
    """[orderPrefix] + [txID]"""
    return bytes([ORDER_PREFIX]) + _fixed(tx_id, ID_LEN, "order id")


def set_order(
    db: Database,
    tx_id: bytes,
    in_asset: bytes,
    in_tick: int,
    out_asset: bytes,
    out_tick: int,
    supply: int,
    owner: bytes,
) -> None:
    value = _ORDER_VALUE.pack(
        _fixed(in_asset, ID_LEN, "in asset"),
        _uint64(in_tick, "in tick"),
        _fixed(out_asset, ID_LEN, "out asset"),
        _uint64(out_tick, "out tick"),
        _uint64(supply, "supply"),
        _fixed(owner, PUBLIC_KEY_LEN, "owner"),
    )
    db.insert(prefix_order_key(tx_id), value)


def get_order(db: Database, order_id: bytes) -> OrderRecord | None:
    value = _get_or_none(db, prefix_order_key(order_id))
    if value is None:
        return None
    return OrderRecord(*_ORDER_VALUE.unpack_from(value))


def delete_order(db: Database, order_id: bytes) -> None:
    db.remove(prefix_order_key(order_id))


# Loans


def prefix_loan_key(asset: bytes, destination: bytes) -> bytes:
    """[loanPrefix] + [asset] + [destination]"""
    return (
        bytes([LOAN_PREFIX])
        + _fixed(asset, ID_LEN, "asset id")
        + _fixed(destination, ID_LEN, "destination")
    )


def get_loan_from_state(read_state: ReadState, asset: bytes, destination: bytes) -> int:
    values = read_state([prefix_loan_key(asset, destination)])
    return _decode_u64(values[0])


def get_loan(db: Database, asset: bytes, destination: bytes) -> int:
    return _decode_u64(_get_or_none(db, prefix_loan_key(asset, destination)))


def set_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    db.insert(prefix_loan_key(asset, destination), _U64.pack(_uint64(amount, "amount")))


def add_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan + amount
    if amount < 0 or new_loan > MAX_UINT64:
        raise InvalidBalanceError(
            f"invalid balance: could not add loan (asset={bytes(asset).hex()}, "
            f"destination={bytes(destination).hex()}, amount={amount})"
        )
    set_loan(db, asset, destination, new_loan)


def sub_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan - amount
    if amount < 0 or new_loan < 0:
        raise InvalidBalanceError(
            f"invalid balance: could not subtract loan (asset={bytes(asset).hex()}, "
            f"destination={bytes(destination).hex()}, amount={amount})"
        )
    if new_loan == 0:
        db.remove(prefix_loan_key(asset, destination))
    else:
        set_loan(db, asset, destination, new_loan)


# Chain bookkeeping


def height_key() -> bytes:
    return bytes([HEIGHT_PREFIX])


def incoming_warp_key_prefix(source_chain_id: bytes, msg_id: bytes) -> bytes:
    return (
        bytes([INCOMING_WARP_PREFIX])
        + _fixed(source_chain_id, ID_LEN, "source chain id")
        + _fixed(msg_id, ID_LEN, "message id")
    )


def outgoing_warp_key_prefix(tx_id: bytes) -> bytes:
    return bytes([OUTGOING_WARP_PREFIX]) + _fixed(tx_id, ID_LEN, "tx id")