# tokenvm

`tokenvm` holds the state layout and the query service of a small token
ledger. The ledger keeps native and user-created assets, per-account
balances, orders between asset pairs, loans of assets sent to other chains,
and a record of every processed transaction.

It uses nothing outside the standard library.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `tokenvm.storage`: how each kind of record is keyed and encoded in a
  key-value store, and the functions that read and change those records.
  `MemoryDatabase` is a dictionary-backed store with `get_value`, `insert`,
  `remove` and `read_state`; any object with the first three methods works
  with these functions.
- `tokenvm.address`: `address(public_key, hrp)` encodes a 32-byte public key
  as a bech32 address with the given prefix; `parse_address(text, hrp)`
  decodes it back, raising `ValueError` on a bad checksum, a wrong prefix or
  a wrong length.
- `tokenvm.rpc_server`: `JSONRPCServer(controller, hrp)` answers JSON-RPC 2.0
  requests for `genesis`, `tx`, `asset`, `balance`, `orders` and `loan` from
  a `Controller` that knows the chain's state. It can be called directly
  through `handle(payload)` or served as a WSGI application (POST only).
  `format_id` and `parse_id` convert 32-byte identifiers to and from the
  checksummed base58 text used on the wire.
- `tokenvm.rpc_client`: `JSONRPCClient(uri, chain_id, service)` sends those
  queries to a node over HTTP and can wait until a balance reaches a minimum
  or a transaction is known.
- `tokenvm.errors`: the exceptions raised by the package, all derived from
  `TokenVMError`: `NotFoundError`, `InvalidBalanceError`, `TxNotFoundError`
  and `AssetNotFoundError`.

## State layout

Every key starts with a one-byte prefix; all integers are big-endian.

| prefix | record        | key after the prefix         | value                                                  |
|--------|---------------|------------------------------|--------------------------------------------------------|
| `0x0`  | transaction   | transaction ID               | timestamp, success flag, units                         |
| `0x0`  | balance       | public key, asset ID         | amount (unsigned 64-bit)                               |
| `0x1`  | asset         | asset ID                     | metadata length (16-bit), metadata, supply, owner, warp flag |
| `0x2`  | order         | transaction ID               | in asset, in tick, out asset, out tick, remaining, owner |
| `0x3`  | loan          | asset ID, destination chain  | amount (unsigned 64-bit)                               |
| `0x4`  | height        | none                         |                                                        |
| `0x5`  | incoming warp | source chain ID, message ID  |                                                        |
| `0x6`  | outgoing warp | transaction ID               |                                                        |

Transactions are meant for a separate metadata store, which is why they
share the `0x0` prefix with balances. The functions `height_key`,
`incoming_warp_key_prefix` and `outgoing_warp_key_prefix` only build keys.

Reads of a missing record return `None` (`get_transaction`, `get_asset`,
`get_order`) or `0` (`get_balance`, `get_loan`). The `*_from_state`
variants take a `read_state` callable that maps a list of keys to a list of
values, with `None` for missing keys; `MemoryDatabase.read_state` is one.

## Balances

```python
from tokenvm.errors import InvalidBalanceError
from tokenvm.storage import MemoryDatabase, add_balance, get_balance, sub_balance

db = MemoryDatabase()
owner = bytes(32)
native = bytes(32)

add_balance(db, owner, native, 100)
sub_balance(db, owner, native, 40)
assert get_balance(db, owner, native) == 60

try:
    sub_balance(db, owner, native, 1_000)
except InvalidBalanceError as exc:
    print(exc)
```

An account with no balance has no record at all: reading it gives `0`, and
subtracting down to zero removes the record instead of storing a zero.
Adding past the unsigned 64-bit limit raises `InvalidBalanceError`, as does
subtracting more than is held. Loans follow the same rules through
`add_loan`, `sub_loan` and `get_loan`.

## Serving and querying

```python
from tokenvm.rpc_server import JSONRPCServer

server = JSONRPCServer(controller, hrp="token")
reply = server.handle({"jsonrpc": "2.0", "method": "tokenvm.balance",
                       "params": {"address": addr, "asset": asset_text}, "id": 1})
```

The method name has the form `service.method`; only the part after the last
dot is used. A failing handler is returned as a JSON-RPC error with code
`-32000` and the exception's message. `orders` passes a limit of 128 to the
controller.

`JSONRPCClient` appends the `/tokenapi` endpoint to the URI it is given.
`tx` and `asset` return `None` when the node answers "tx not found" or
"asset not found"; any other error answer is raised as `RPCError`. The
genesis is fetched once and then remembered. `wait_for_balance` and
`wait_for_transaction` poll every `poll_interval` seconds and raise
`TimeoutError` when a `timeout` is given and runs out.

## What it does not do

The package does not execute transactions, build or verify blocks, or run a
node: the `Controller` that the server reads from must be supplied by the
caller. `MemoryDatabase` keeps everything in memory; there is no on-disk
store. There is no command-line program.