"""State layout, addresses and a JSON-RPC query service and client for a token ledger."""

__version__ = "0.0.1"