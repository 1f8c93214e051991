"""In-memory development node fixtures.

- A fresh :py:class:`InMemoryChainClient` for each test

- A 6 decimal USDC-like token and a whale holding it
"""

import cachetools
import pytest
from eth_account import Account
from eth_typing import HexAddress

from fork_faucet.balances import BalanceOracle
from fork_faucet.testing import InMemoryChainClient


@pytest.fixture()
def client() -> InMemoryChainClient:
    """Empty development node with three funded accounts."""
    return InMemoryChainClient()


@pytest.fixture()
def usdc(client: InMemoryChainClient) -> HexAddress:
    """USDC-like token with 6 decimals."""
    return client.deploy_token("USDC", decimals=6)


@pytest.fixture()
def whale() -> HexAddress:
    """An address that is not a node account, so it cannot transact unless impersonated.

    Holds no native currency.
    """
    return Account.create().address


@pytest.fixture()
def funded_whale(client: InMemoryChainClient, usdc: HexAddress, whale: HexAddress) -> HexAddress:
    """Whale holding 1,000,000 USDC."""
    client.mint(usdc, whale, 1_000_000 * 10**6)
    return whale


@pytest.fixture()
def recipient(client: InMemoryChainClient) -> HexAddress:
    """Account #0"""
    return client.accounts[0]


@pytest.fixture()
def balance_oracle(client: InMemoryChainClient) -> BalanceOracle:
    """Oracle with a private token cache, so tests do not see each other's tokens."""
    return BalanceOracle(client, cache=cachetools.LRUCache(16))
