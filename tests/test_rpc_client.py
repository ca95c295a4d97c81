import threading
from wsgiref.simple_server import WSGIRequestHandler, make_server

import pytest

from tokenvm import storage
from tokenvm.address import address
from tokenvm.rpc_client import AssetInfo, JSONRPCClient, RPCError, TransactionStatus
from tokenvm.rpc_server import JSONRPCServer

HRP = "token"
EMPTY_ID = bytes(32)
EMPTY_PK = bytes(32)
SENDER_PK = bytes(range(1, 33))
OTHER_PK = bytes(range(33, 65))
CHAIN_ID = bytes([7] * 32)
SYMBOL = b"TKN"
START_AMOUNT = 1_000_000_000_000


class StateController:
    def __init__(self) -> None:
        self.db = storage.MemoryDatabase()
        self.genesis_calls = 0
        self.order_book: dict[str, list[dict]] = {}

    def genesis(self):
        self.genesis_calls += 1
        return {"customAllocation": [{"address": address(SENDER_PK, HRP), "balance": START_AMOUNT}]}

    def get_transaction(self, tx_id):
        return storage.get_transaction(self.db, tx_id)

    def get_asset_from_state(self, asset):
        return storage.get_asset_from_state(self.db.read_state, asset)

    def get_balance_from_state(self, public_key, asset):
        return storage.get_balance_from_state(self.db.read_state, public_key, asset)

    def orders(self, pair, limit):
        return self.order_book.get(pair, [])[:limit]

    def get_loan_from_state(self, asset, destination):
        return storage.get_loan_from_state(self.db.read_state, asset, destination)


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        pass


@pytest.fixture
def controller():
    c = StateController()
    storage.set_balance(c.db, SENDER_PK, EMPTY_ID, START_AMOUNT)
    storage.set_asset(c.db, EMPTY_ID, SYMBOL, START_AMOUNT, EMPTY_PK, False)
    return c


@pytest.fixture
def base_uri(controller):
    httpd = make_server("127.0.0.1", 0, JSONRPCServer(controller, HRP), handler_class=_QuietHandler)
    thread = threading.Thread(target=httpd.serve_forever, kwargs={"poll_interval": 0.05}, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_port}"
    httpd.shutdown()
    httpd.server_close()
    thread.join()


@pytest.fixture
def client(base_uri):
    return JSONRPCClient(base_uri + "/", CHAIN_ID, "tokenvm", poll_interval=0.01)


def test_uri_gets_endpoint():
    cli = JSONRPCClient("http://localhost:9650/ext/bc/x/", CHAIN_ID, "tokenvm")
    assert cli.uri == "http://localhost:9650/ext/bc/x/tokenapi"


def test_genesis_is_cached(client, controller):
    first = client.genesis()
    second = client.genesis()
    assert first == second
    assert first["customAllocation"][0]["balance"] == START_AMOUNT
    assert controller.genesis_calls == 1


def test_genesis_allocations_match_balances(client):
    total = 0
    for alloc in client.genesis()["customAllocation"]:
        assert client.balance(alloc["address"], EMPTY_ID) == alloc["balance"]
        total += alloc["balance"]
    info = client.asset(EMPTY_ID)
    assert info == AssetInfo(SYMBOL, total, address(EMPTY_PK, HRP), False)


def test_native_balance(client):
    assert client.balance(address(SENDER_PK, HRP), EMPTY_ID) == 1_000_000_000_000


def test_balance_of_new_account_is_zero(client):
    assert client.balance(address(OTHER_PK, HRP), EMPTY_ID) == 0


def test_balance_bad_address_raises(client):
    with pytest.raises(RPCError):
        client.balance("not-an-address", EMPTY_ID)


def test_missing_asset_is_none(client):
    assert client.asset(bytes([2] * 32)) is None


def test_missing_tx_is_none(client):
    assert client.tx(bytes([3] * 32)) is None


def test_found_tx(client, controller):
    tx_id = bytes([4] * 32)
    storage.store_transaction(controller.db, tx_id, 1234, False, 472)
    assert client.tx(tx_id) == TransactionStatus(success=False, timestamp=1234, units=472)


def test_orders(client, controller):
    controller.order_book["in-out"] = [{"id": "order", "inTick": 1, "outTick": 2, "remaining": 4}]
    orders = client.orders("in-out")
    assert orders == [{"id": "order", "inTick": 1, "outTick": 2, "remaining": 4}]
    assert client.orders("none") == []


def test_loan(client, controller):
    destination = bytes([5] * 32)
    assert client.loan(EMPTY_ID, destination) == 0
    storage.add_loan(controller.db, EMPTY_ID, destination, 5000)
    assert client.loan(EMPTY_ID, destination) == 5000


def test_wait_for_transaction(client, controller):
    tx_id = bytes([6] * 32)
    timer = threading.Timer(0.05, storage.store_transaction, (controller.db, tx_id, 99, True, 472))
    timer.start()
    try:
        assert client.wait_for_transaction(tx_id, timeout=5.0) is True
    finally:
        timer.cancel()


def test_wait_for_transaction_times_out(client):
    with pytest.raises(TimeoutError):
        client.wait_for_transaction(bytes([8] * 32), timeout=0.05)


def test_wait_for_balance(client, controller):
    timer = threading.Timer(0.05, storage.add_balance, (controller.db, OTHER_PK, EMPTY_ID, 5000))
    timer.start()
    try:
        client.wait_for_balance(address(OTHER_PK, HRP), EMPTY_ID, 5000, timeout=5.0)
    finally:
        timer.cancel()
    assert client.balance(address(OTHER_PK, HRP), EMPTY_ID) == 5000


def test_wait_for_balance_times_out(client):
    with pytest.raises(TimeoutError):
        client.wait_for_balance(address(OTHER_PK, HRP), EMPTY_ID, 1, timeout=0.05)