"""Exception types raised by the token VM storage and RPC layers."""


class TokenVMError(Exception):
    """Base class for every error raised by this package."""

    default_message = "token vm error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class NotFoundError(TokenVMError):
    """A key is not present in the database."""

    default_message = "not found"


class InvalidBalanceError(TokenVMError):
    """A balance or loan update would overflow or go below zero."""

    default_message = "invalid balance"


class TxNotFoundError(NotFoundError):
    """The requested transaction is unknown."""

    default_message = "tx not found"


class AssetNotFoundError(NotFoundError):
    """The requested asset is unknown."""

    default_message = "asset not found"