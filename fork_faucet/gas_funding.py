"""Native gas top up for impersonated accounts.

A whale holding tokens does not necessarily hold native currency to pay gas,
e.g. when it is a contract or an exchange cold wallet.
We do not estimate the gas: we overwrite the balance with a generous fixed amount.
"""

import logging

from eth_typing import HexAddress
from web3 import Web3

from fork_faucet.chain_client import ChainClient

logger = logging.getLogger(__name__)

#: 1 ETH (or the native currency of the forked chain) in wei.
#: Plenty for a single ERC-20 transfer on any EVM chain.
DEFAULT_GAS_TOP_UP = 10**18


class NativeGasFunder:
    """Set native balances with the node balance override cheat code."""

    def __init__(self, client: ChainClient, default_amount: int = DEFAULT_GAS_TOP_UP):
        assert type(default_amount) == int, f"Wei amount must be int, got {type(default_amount)}"
        self.client = client
        self.default_amount = default_amount

    def ensure_balance(self, address: HexAddress | str, min_amount: int | None = None) -> int:
        """Set the native balance of an address to exactly ``min_amount`` wei.

        - Absolute set, not an increment: the prior balance does not matter

        - Repeated calls with the same amount give the same final state

        :param min_amount:
            Wei. If not given use the default amount of this funder.

        :raise UnsupportedNode:
            The node does not support balance override

        :raise RpcFailure:
            Transport error

        :return:
            The balance that was set
        """
        if min_amount is None:
            min_amount = self.default_amount

        assert type(min_amount) == int, f"Wei amount must be int, got {type(min_amount)}"
        if min_amount < 0:
            raise ValueError(f"Cannot set a negative balance: {min_amount}")

        address = Web3.to_checksum_address(address)
        self.client.set_balance(address, min_amount)
        logger.info("Set native balance of %s to %s", address, Web3.from_wei(min_amount, "ether"))
        return min_amount
