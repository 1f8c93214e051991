"""In-memory development node for unit testing.

:py:class:`InMemoryChainClient` behaves like an Anvil node from the point of view
of :py:class:`fork_faucet.chain_client.ChainClient`:

- Only node managed accounts and impersonated accounts can send transactions

- Sending a transaction costs native gas, so an empty whale cannot transact

- ERC-20 transfers revert when the sender balance is too low

- Impersonation and balance override can be switched off to mimic a live node

Failures can be injected per operation with :py:meth:`InMemoryChainClient.inject_failure`.

Example:

.. code-block:: python

    client = InMemoryChainClient()
    usdc = client.deploy_token("USDC", decimals=6)
    client.mint(usdc, whale, 1_000_000)
    orchestrator = FundingOrchestrator(client)
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Optional

from eth_account import Account
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

from fork_faucet.chain_client import DEFAULT_CONFIRMATION_TIMEOUT, ChainClient
from fork_faucet.errors import RpcFailure, TransferReverted, UnsupportedNode

logger = logging.getLogger(__name__)

#: Anvil and Hardhat default chain id
DEV_CHAIN_ID = 31337

#: What a simulated ERC-20 transfer costs in native gas, wei.
#: 65k gas at 1 gwei.
SIMULATED_TRANSFER_GAS_COST = 65_000 * 10**9

#: Native balance of node managed accounts, 10,000 ETH like Anvil
DEFAULT_ACCOUNT_BALANCE = 10_000 * 10**18


@dataclass
class InMemoryToken:
    """ERC-20 ledger held by the in-memory node."""

    address: HexAddress
    symbol: str
    decimals: int
    balances: dict[str, int] = field(default_factory=dict)

    #: All transfers revert with this reason when set
    revert_reason: Optional[str] = None

    def balance_of(self, address: str) -> int:
        return self.balances.get(address.lower(), 0)


class InMemoryChainClient(ChainClient):
    """ChainClient backed by Python dicts instead of a node."""

    def __init__(
        self,
        chain_id: int = DEV_CHAIN_ID,
        account_count: int = 3,
        supports_impersonation: bool = True,
        supports_set_balance: bool = True,
    ):
        self._chain_id = chain_id
        self.supports_impersonation = supports_impersonation
        self.supports_set_balance = supports_set_balance
        self.accounts: list[HexAddress] = [Account.create().address for _ in range(account_count)]
        self.native_balances: dict[str, int] = {a.lower(): DEFAULT_ACCOUNT_BALANCE for a in self.accounts}
        self.impersonated: set[str] = set()
        self.tokens: dict[str, InMemoryToken] = {}
        self.receipts: dict[HexBytes, dict] = {}
        self.block_number = 1

        #: Every call made, as (operation, args) tuples
        self.calls: list[tuple] = []

        #: Operation -> (calls left to let through, exception)
        self._failures: dict[str, tuple[int, Exception]] = {}
        self._tx_counter = itertools.count(1)

    def __repr__(self):
        return f"<InMemoryChainClient chain {self._chain_id}, {len(self.tokens)} tokens>"

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def inject_failure(self, operation: str, exception: Exception, skip: int = 0):
        """Make a call to ``operation`` raise ``exception``, once.

        :param operation:
            Method name, e.g. ``"stop_impersonating_account"``

        :param skip:
            Let this many calls succeed before failing
        """
        assert skip >= 0, f"Bad skip: {skip}"
        self._failures[operation] = (skip, exception)

    def _enter(self, operation: str, *args):
        self.calls.append((operation, args))
        failure = self._failures.get(operation)
        if failure is None:
            return

        skip, exception = failure
        if skip > 0:
            self._failures[operation] = (skip - 1, exception)
            return

        del self._failures[operation]
        raise exception

    def deploy_token(self, symbol: str, decimals: int = 18) -> HexAddress:
        """Create a new ERC-20 ledger at a random address."""
        address = Account.create().address
        self.tokens[address.lower()] = InMemoryToken(address, symbol, decimals)
        return address

    def mint(self, token: str, address: str, raw_amount: int):
        """Credit ``raw_amount`` tokens to ``address`` out of thin air."""
        ledger = self._get_token(token)
        ledger.balances[address.lower()] = ledger.balance_of(address) + raw_amount

    def is_impersonated(self, address: str) -> bool:
        return address.lower() in self.impersonated

    def _get_token(self, token: str) -> InMemoryToken:
        ledger = self.tokens.get(token.lower())
        if ledger is None:
            # Calling a non-contract address fails to decode
            raise RpcFailure(f"Could not decode contract function call, no contract at {token}", token=token)
        return ledger

    def impersonate_account(self, address: HexAddress | str) -> None:
        self._enter("impersonate_account", address)
        if not self.supports_impersonation:
            raise UnsupportedNode("Node does not support impersonateAccount", address=address)
        self.impersonated.add(address.lower())

    def stop_impersonating_account(self, address: HexAddress | str) -> None:
        self._enter("stop_impersonating_account", address)
        if not self.supports_impersonation:
            raise UnsupportedNode("Node does not support stopImpersonatingAccount", address=address)
        self.impersonated.discard(address.lower())

    def set_balance(self, address: HexAddress | str, wei: int) -> None:
        self._enter("set_balance", address, wei)
        if not self.supports_set_balance:
            raise UnsupportedNode("Node does not support setBalance", address=address)
        self.native_balances[address.lower()] = wei

    def get_balance(self, address: HexAddress | str) -> int:
        self._enter("get_balance", address)
        return self.native_balances.get(address.lower(), 0)

    def get_accounts(self) -> list[HexAddress]:
        self._enter("get_accounts")
        return list(self.accounts)

    def fetch_token_decimals(self, token: HexAddress | str) -> int:
        self._enter("fetch_token_decimals", token)
        return self._get_token(token).decimals

    def fetch_token_symbol(self, token: HexAddress | str) -> str:
        self._enter("fetch_token_symbol", token)
        return self._get_token(token).symbol

    def fetch_token_balance(self, token: HexAddress | str, address: HexAddress | str) -> int:
        self._enter("fetch_token_balance", token, address)
        return self._get_token(token).balance_of(address)

    def send_token_transfer(
        self,
        token: HexAddress | str,
        source: HexAddress | str,
        recipient: HexAddress | str,
        raw_amount: int,
    ) -> HexBytes:
        self._enter("send_token_transfer", token, source, recipient, raw_amount)
        context = dict(address=source, token=token, amount=raw_amount)
        ledger = self._get_token(token)

        can_sign = source.lower() in self.impersonated or source.lower() in {a.lower() for a in self.accounts}
        if not can_sign:
            raise RpcFailure(f"No Signer available for {source}", **context)

        if self.native_balances.get(source.lower(), 0) < SIMULATED_TRANSFER_GAS_COST:
            raise RpcFailure(f"Insufficient funds for gas * price + value: {source}", **context)

        # Gas estimation runs the transfer first, so reverts never reach the mempool
        if ledger.revert_reason:
            reason = f"execution reverted: {ledger.revert_reason}"
            raise TransferReverted(reason, revert_reason=reason, **context)

        balance = ledger.balance_of(source)
        if balance < raw_amount:
            reason = "execution reverted: ERC20: transfer amount exceeds balance"
            raise TransferReverted(reason, revert_reason=reason, **context)

        ledger.balances[source.lower()] = balance - raw_amount
        ledger.balances[recipient.lower()] = ledger.balance_of(recipient) + raw_amount
        self.native_balances[source.lower()] -= SIMULATED_TRANSFER_GAS_COST

        self.block_number += 1
        tx_hash = HexBytes(next(self._tx_counter).to_bytes(32, "big"))
        self.receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "status": 1,
            "blockNumber": self.block_number,
            "from": Web3.to_checksum_address(source),
            "to": ledger.address,
        }
        return tx_hash

    def wait_for_receipt(self, tx_hash: HexBytes, timeout: float = DEFAULT_CONFIRMATION_TIMEOUT) -> dict:
        self._enter("wait_for_receipt", tx_hash)
        receipt = self.receipts.get(HexBytes(tx_hash))
        if receipt is None:
            raise RpcFailure(f"Transaction {HexBytes(tx_hash).hex()} is not in the chain after {timeout} seconds")
        return receipt
