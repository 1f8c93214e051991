"""Fund test accounts with ERC-20 tokens from a whale on a forked chain.

:py:class:`FundingOrchestrator` runs the whole impersonate, top up gas,
transfer and release sequence for a single :py:class:`FundingRequest`.

Example:

.. code-block:: python

    web3 = create_web3("http://localhost:8545")
    client = Web3ChainClient(web3)
    config = FaucetConfig.for_chain(client.chain_id)

    request = FundingRequest(
        recipient=client.get_accounts()[0],
        amount=TokenAmount.from_human(1000, 6),
        source=config.holder,
        token=config.token,
    )
    result = FundingOrchestrator(client).fund(request)
    print(f"Received {result.delta}")

The impersonation of the holder is released on every exit path.
If the release itself fails after a successful transfer, the release error propagates.
"""

import enum
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

from fork_faucet.amounts import TokenAmount
from fork_faucet.balances import BalanceOracle, BalanceReading
from fork_faucet.chain_client import DEFAULT_CONFIRMATION_TIMEOUT, ChainClient
from fork_faucet.errors import FaucetError
from fork_faucet.gas_funding import DEFAULT_GAS_TOP_UP, NativeGasFunder
from fork_faucet.impersonation import ImpersonationManager
from fork_faucet.transfer import TokenTransferExecutor

logger = logging.getLogger(__name__)


#: Lowercased holder address -> lock.
#: Impersonation is node global state, so two runs on the same holder
#: would release each other's impersonation.
_holder_locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)

_holder_locks_guard = threading.Lock()


def get_holder_lock(address: str) -> threading.Lock:
    """In-process lock serialising funding runs from the same holder."""
    with _holder_locks_guard:
        return _holder_locks[address.lower()]


class FundingState(enum.Enum):
    """Where a funding run is.

    Happy path ``idle -> impersonating -> funded -> transferred -> released``.
    """

    idle = "idle"

    impersonating = "impersonating"

    #: Holder has native gas
    funded = "funded"

    #: Tokens landed on the recipient, holder still impersonated
    transferred = "transferred"

    released = "released"

    impersonation_failed = "impersonation_failed"

    funding_failed = "funding_failed"

    transfer_failed = "transfer_failed"

    def is_failure(self) -> bool:
        return self in (FundingState.impersonation_failed, FundingState.funding_failed, FundingState.transfer_failed)


@dataclass(frozen=True, slots=True)
class FundingRequest:
    """Fund ``recipient`` with ``amount`` of ``token`` taken from ``source``."""

    #: Who receives the tokens
    recipient: HexAddress

    #: How much, in the token units
    amount: TokenAmount

    #: Whale that holds the tokens and gets impersonated
    source: HexAddress

    #: ERC-20 contract
    token: HexAddress

    def __post_init__(self):
        assert isinstance(self.amount, TokenAmount), f"Expected TokenAmount, got {type(self.amount)}"
        # Frozen dataclass, normalise in place
        for name in ("recipient", "source", "token"):
            object.__setattr__(self, name, Web3.to_checksum_address(getattr(self, name)))


@dataclass(frozen=True, slots=True)
class FundingResult:
    """Outcome of a successful funding run."""

    request: FundingRequest

    #: Transfer transaction
    tx_hash: HexBytes

    #: Block the transfer was included in
    block_number: int

    recipient_balance_before: BalanceReading

    recipient_balance_after: BalanceReading

    #: Always :py:attr:`FundingState.released` for a returned result
    state: FundingState

    @property
    def delta(self) -> TokenAmount:
        """How much the recipient balance changed.

        :raise ValueError:
            The recipient balance decreased, e.g. someone else moved tokens out during the run
        """
        return self.recipient_balance_after.raw_balance - self.recipient_balance_before.raw_balance


class FundingOrchestrator:
    """Move tokens from a whale to a test account.

    Sequence:

    1. Read the recipient balance
    2. Impersonate the holder
    3. Set the native balance of the holder so it can pay gas
    4. Transfer tokens
    5. Release the impersonation
    6. Read the recipient balance again

    Errors propagate as is, after the impersonation has been released.
    """

    def __init__(
        self,
        client: ChainClient,
        gas_top_up: int = DEFAULT_GAS_TOP_UP,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        balance_oracle: Optional[BalanceOracle] = None,
    ):
        """
        :param gas_top_up:
            Native balance set on the holder before the transfer, in wei

        :param confirmation_timeout:
            How long to wait for the transfer to be mined, seconds

        :param balance_oracle:
            Use a custom oracle, e.g. one with a private token cache
        """
        self.client = client
        self.gas_top_up = gas_top_up
        self.impersonation = ImpersonationManager(client)
        self.gas_funder = NativeGasFunder(client, default_amount=gas_top_up)
        self.executor = TokenTransferExecutor(client, confirmation_timeout=confirmation_timeout)
        self.balance_oracle = balance_oracle or BalanceOracle(client)

        #: State of the current or the last run
        self.state = FundingState.idle

        #: States visited by the current or the last run, in order
        self.state_history: list[FundingState] = [FundingState.idle]

    def __repr__(self):
        return f"<FundingOrchestrator {self.client} {self.state.value}>"

    def _set_state(self, state: FundingState):
        logger.debug("Funding state %s -> %s", self.state.value, state.value)
        self.state = state
        self.state_history.append(state)

    def fund(self, request: FundingRequest) -> FundingResult:
        """Execute a funding request.

        :raise UnsupportedNode:
            The node cannot impersonate or override balances

        :raise InsufficientBalance:
            The holder does not have enough tokens

        :raise TransferReverted:
            The token rejected the transfer

        :raise RpcFailure:
            Transport error or timeout.
            If the transfer was mined before the failure, its hash is in ``tx_hash`` of the error.

        :return:
            Result with the recipient balance before and after
        """
        assert isinstance(request, FundingRequest), f"Expected FundingRequest, got {type(request)}"

        with get_holder_lock(request.source):
            self.state = FundingState.idle
            self.state_history = [FundingState.idle]

            before = self.balance_oracle.query(request.token, request.recipient)
            if before.decimals != request.amount.decimals:
                raise ValueError(f"Token {request.token} has {before.decimals} decimals, request amount has {request.amount.decimals}")

            logger.info(
                "Funding %s with %s %s from %s",
                request.recipient,
                request.amount,
                before.symbol,
                request.source,
            )

            try:
                with self.impersonation.impersonated(request.source) as handle:
                    self._set_state(FundingState.impersonating)

                    try:
                        self.gas_funder.ensure_balance(handle.address, self.gas_top_up)
                    except Exception:
                        self._set_state(FundingState.funding_failed)
                        raise
                    self._set_state(FundingState.funded)

                    try:
                        receipt = self.executor.transfer(handle, request.token, request.recipient, request.amount)
                    except Exception:
                        self._set_state(FundingState.transfer_failed)
                        raise
                    self._set_state(FundingState.transferred)
            except Exception:
                if self.state == FundingState.idle:
                    self._set_state(FundingState.impersonation_failed)
                raise

            self._set_state(FundingState.released)

            tx_hash = HexBytes(receipt["transactionHash"])

            try:
                after = self.balance_oracle.query(request.token, request.recipient)
            except FaucetError as e:
                # Tokens already moved, give the caller the transaction to look up
                logger.warning("Transfer %s landed but reading the balance of %s failed", tx_hash.hex(), request.recipient)
                e.tx_hash = tx_hash
                raise

        result = FundingResult(
            request=request,
            tx_hash=tx_hash,
            block_number=receipt["blockNumber"],
            recipient_balance_before=before,
            recipient_balance_after=after,
            state=self.state,
        )

        logger.info("Funded %s, balance now %s", request.recipient, after.format())
        return result
