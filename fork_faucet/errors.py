"""Exceptions raised by the funding service.

All errors carry enough context (address, token, raw amount)
to diagnose a failure without re-querying the chain state.
The underlying RPC exception, if any, is chained as ``__cause__``.

- :py:class:`UnsupportedNode`: the node lacks impersonation or balance override cheat codes. Fatal.

- :py:class:`RpcFailure`: transport failure or timeout. Safe to retry with backoff.

- :py:class:`TransferReverted` and :py:class:`InsufficientBalance`: the chain rejected the transfer.
  Authoritative, do not retry automatically.

- :py:class:`NotActive`: impersonation handle used or released out of order. Programming error.
"""

from typing import Optional


class FaucetError(Exception):
    """Base class for the funding service errors."""

    #: Can the caller retry the operation as is
    retryable = False

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        token: Optional[str] = None,
        amount: Optional[int] = None,
        tx_hash: Optional[bytes] = None,
    ):
        super().__init__(message)
        self.address = address
        self.token = token
        self.amount = amount

        #: Set when the error happened after a transaction was already mined
        self.tx_hash = tx_hash


class UnsupportedNode(FaucetError):
    """The node does not expose the account impersonation or balance override RPC methods.

    E.g. connected to a live network instead of Anvil or Hardhat.
    """


class RpcFailure(FaucetError):
    """JSON-RPC transport error: timeout, node unreachable or malformed response."""

    retryable = True


class NotActive(FaucetError):
    """Impersonation handle is not active.

    Raised when releasing a handle twice or transacting through a released handle.
    """


class TransferReverted(FaucetError):
    """The token contract reverted the transfer."""

    def __init__(self, message: str, revert_reason: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.revert_reason = revert_reason


class InsufficientBalance(TransferReverted):
    """The source does not hold enough tokens for the transfer.

    :py:attr:`balance` is the raw token balance of the source at the time of the failure.
    """

    def __init__(self, message: str, balance: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.balance = balance
