"""Read-only ERC-20 balance queries.

Token decimals and symbol never change for a deployed token,
so they are cached per chain in process memory.
Balances are always read fresh.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

import cachetools
from eth_typing import HexAddress
from web3 import Web3

from fork_faucet.amounts import TokenAmount
from fork_faucet.chain_client import ChainClient

logger = logging.getLogger(__name__)

#: By default we cache 1024 token details using LRU in the process memory.
DEFAULT_TOKEN_CACHE = cachetools.LRUCache(1024)


@dataclass(frozen=True, slots=True)
class BalanceReading:
    """A point-in-time ERC-20 balance of an address."""

    #: Holder, checksummed
    address: HexAddress

    #: Token contract, checksummed
    token: HexAddress

    #: Balance in raw units
    raw_balance: TokenAmount

    #: Token decimals, as reported by the token contract
    decimals: int

    #: Token symbol, as reported by the token contract
    symbol: str

    def __repr__(self):
        return f"<BalanceReading {self.address} {self.format()}>"

    @property
    def human_balance(self) -> Decimal:
        """Exact balance in token units."""
        return self.raw_balance.to_human()

    def format(self) -> str:
        """Human-readable balance, e.g. ``500000 USDC``.

        Display only.
        """
        return format_reading(self)


def format_reading(reading: BalanceReading) -> str:
    """Render a balance reading as ``<amount> <symbol>``."""
    return f"{reading.raw_balance} {reading.symbol}"


def generate_cache_key(chain_id: int, token: str) -> str:
    """Token details are cached by (chain, address), address lowercased."""
    assert type(chain_id) == int, f"Bad chain id: {chain_id}"
    assert token.startswith("0x"), f"Bad token address: {token}"
    return f"{chain_id}-{token.lower()}"


class BalanceOracle:
    """Query ERC-20 balances through a :py:class:`ChainClient`."""

    def __init__(self, client: ChainClient, cache: cachetools.Cache | None = DEFAULT_TOKEN_CACHE):
        """
        :param cache:
            Token details cache.

            Instance of :py:class:`cachetools.Cache`.
            Set to ``None`` to disable the cache.
        """
        self.client = client
        self.cache = cache

    def fetch_token_details(self, token: HexAddress | str) -> tuple[int, str]:
        """Get token decimals and symbol, cached.

        :return:
            (decimals, symbol) tuple
        """
        key = generate_cache_key(self.client.chain_id, token)

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        logger.debug("Fetching uncached token details for %s", token)
        details = (self.client.fetch_token_decimals(token), self.client.fetch_token_symbol(token))

        if self.cache is not None:
            self.cache[key] = details

        return details

    def query(self, token: HexAddress | str, address: HexAddress | str) -> BalanceReading:
        """Read the current token balance of an address.

        Zero is a valid reading.

        :raise RpcFailure:
            Transport error, or the token address is not an ERC-20 contract
        """
        token = Web3.to_checksum_address(token)
        address = Web3.to_checksum_address(address)
        decimals, symbol = self.fetch_token_details(token)
        raw = self.client.fetch_token_balance(token, address)
        return BalanceReading(
            address=address,
            token=token,
            raw_balance=TokenAmount(raw, decimals),
            decimals=decimals,
            symbol=symbol,
        )
