"""Account impersonation as an explicit capability.

Development nodes let anyone send transactions as any address
after ``impersonateAccount`` RPC call. This state lives in the node,
not in our process. :py:class:`ImpersonationHandle` makes the ownership visible:
whoever holds an active handle may transact as the address, and must release it.

Use :py:meth:`ImpersonationManager.impersonated` so that the release happens on all exit paths:

.. code-block:: python

    manager = ImpersonationManager(client)
    with manager.impersonated(whale) as handle:
        executor.transfer(handle, usdc, recipient, amount)
    # whale is no longer impersonated, even if the transfer raised

.. note ::

    The node does not enforce a single owner. Two processes impersonating
    the same address race on the same node flag.
"""

import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from eth_typing import HexAddress
from web3 import Web3

from fork_faucet.chain_client import ChainClient
from fork_faucet.errors import NotActive

logger = logging.getLogger(__name__)


class ImpersonationState(enum.Enum):
    """Lifecycle of an impersonation handle."""

    inactive = "inactive"

    active = "active"


@dataclass(eq=False)
class ImpersonationHandle:
    """Live capability to sign transactions as :py:attr:`address` on the node.

    Created by :py:meth:`ImpersonationManager.acquire`,
    deactivated by :py:meth:`ImpersonationManager.release`.
    """

    #: Impersonated address, checksummed
    address: HexAddress

    state: ImpersonationState = ImpersonationState.active

    def __repr__(self):
        return f"<ImpersonationHandle {self.address} {self.state.value}>"

    @property
    def is_active(self) -> bool:
        return self.state == ImpersonationState.active

    def require_active(self):
        """Raise :py:class:`NotActive` unless the handle can be used."""
        if not self.is_active:
            raise NotActive(f"Impersonation of {self.address} is not active", address=self.address)


class ImpersonationManager:
    """Acquire and release impersonation of addresses on a development node."""

    def __init__(self, client: ChainClient):
        self.client = client

        #: Lowercased address -> live handle
        self.active_handles: dict[str, ImpersonationHandle] = {}

    def acquire(self, address: HexAddress | str) -> ImpersonationHandle:
        """Start impersonating an address.

        Idempotent: re-acquiring an address that is already active
        repeats the node call and returns the existing handle.

        :raise UnsupportedNode:
            The node has no impersonation support

        :raise RpcFailure:
            Transport error
        """
        address = Web3.to_checksum_address(address)
        self.client.impersonate_account(address)

        handle = self.active_handles.get(address.lower())
        if handle is None:
            handle = ImpersonationHandle(address)
            self.active_handles[address.lower()] = handle

        logger.info("Impersonating %s", address)
        return handle

    def release(self, handle: ImpersonationHandle):
        """Stop impersonating.

        The handle is marked inactive only after the node has cleared the impersonation.

        :raise NotActive:
            The handle was already released

        :raise RpcFailure:
            Transport error, the handle stays active
        """
        handle.require_active()
        self.client.stop_impersonating_account(handle.address)
        handle.state = ImpersonationState.inactive
        self.active_handles.pop(handle.address.lower(), None)
        logger.info("Stopped impersonating %s", handle.address)

    def is_impersonating(self, address: HexAddress | str) -> bool:
        """Do we hold an active handle for this address."""
        return address.lower() in self.active_handles

    @contextmanager
    def impersonated(self, address: HexAddress | str) -> Iterator[ImpersonationHandle]:
        """Impersonate for the duration of a ``with`` block.

        Release is attempted on every exit path.
        If the block raised and the release fails too, the release error is logged
        and the original exception propagates.
        """
        handle = self.acquire(address)
        try:
            yield handle
        except BaseException:
            if handle.is_active:
                try:
                    self.release(handle)
                except Exception:
                    logger.error("Could not release impersonation of %s while handling another error", handle.address, exc_info=True)
            raise
        else:
            if handle.is_active:
                self.release(handle)
