"""Balance queries."""

from decimal import Decimal

import cachetools
import pytest

from fork_faucet.balances import BalanceOracle
from fork_faucet.errors import RpcFailure
from fork_faucet.testing import InMemoryChainClient, InMemoryToken


def test_query_balance(client: InMemoryChainClient, usdc, recipient, balance_oracle: BalanceOracle):
    client.mint(usdc, recipient, 500_000 * 10**6)

    reading = balance_oracle.query(usdc, recipient)
    assert reading.address == recipient
    assert reading.token == usdc
    assert reading.raw_balance.raw == 500_000 * 10**6
    assert reading.decimals == 6
    assert reading.symbol == "USDC"
    assert reading.human_balance == Decimal(500_000)
    assert reading.format() == "500000 USDC"


def test_query_fractional_balance(client: InMemoryChainClient, usdc, recipient, balance_oracle: BalanceOracle):
    client.mint(usdc, recipient, 1_500_000)
    assert balance_oracle.query(usdc, recipient).format() == "1.5 USDC"


def test_query_zero(usdc, whale, balance_oracle: BalanceOracle):
    """Empty accounts are a valid reading, not an error."""
    reading = balance_oracle.query(usdc, whale)
    assert reading.raw_balance.raw == 0
    assert reading.format() == "0 USDC"


def test_query_lowercase_address(usdc, recipient, balance_oracle: BalanceOracle):
    reading = balance_oracle.query(usdc.lower(), recipient.lower())
    assert reading.address == recipient
    assert reading.token == usdc


def test_token_details_cached(client: InMemoryChainClient, usdc, recipient, balance_oracle: BalanceOracle):
    """Decimals and symbol are read once, balances every time."""
    balance_oracle.query(usdc, recipient)
    client.mint(usdc, recipient, 1)
    assert balance_oracle.query(usdc, recipient).raw_balance.raw == 1

    ops = [op for op, args in client.calls]
    assert ops.count("fetch_token_decimals") == 1
    assert ops.count("fetch_token_symbol") == 1
    assert ops.count("fetch_token_balance") == 2


def test_token_details_cache_per_chain(usdc, recipient):
    """The same token address on another chain is a different token."""
    cache = cachetools.LRUCache(16)

    client_1 = InMemoryChainClient(chain_id=1)
    client_1.tokens[usdc.lower()] = InMemoryToken(usdc, "USDC", 6)

    client_2 = InMemoryChainClient(chain_id=56)
    client_2.tokens[usdc.lower()] = InMemoryToken(usdc, "USDT", 18)

    assert BalanceOracle(client_1, cache=cache).query(usdc, recipient).symbol == "USDC"
    assert BalanceOracle(client_2, cache=cache).query(usdc, recipient).symbol == "USDT"


def test_cache_disabled(client: InMemoryChainClient, usdc, recipient):
    oracle = BalanceOracle(client, cache=None)
    oracle.query(usdc, recipient)
    oracle.query(usdc, recipient)
    ops = [op for op, args in client.calls]
    assert ops.count("fetch_token_decimals") == 2


def test_query_not_a_token(client: InMemoryChainClient, whale, recipient, balance_oracle: BalanceOracle):
    with pytest.raises(RpcFailure):
        balance_oracle.query(whale, recipient)
