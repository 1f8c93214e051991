"""ERC-20 transfers signed as an impersonated holder."""

import logging

from eth_typing import HexAddress
from web3 import Web3
from web3.types import TxReceipt

from fork_faucet.amounts import TokenAmount
from fork_faucet.chain_client import DEFAULT_CONFIRMATION_TIMEOUT, ChainClient
from fork_faucet.errors import InsufficientBalance, RpcFailure, TransferReverted
from fork_faucet.impersonation import ImpersonationHandle

logger = logging.getLogger(__name__)


class TokenTransferExecutor:
    """Send ``transfer()`` from the impersonated address and wait until it is mined.

    Reverts are classified by reading the sender balance after the failure:
    the revert message format differs between token implementations,
    the balance does not.
    """

    def __init__(self, client: ChainClient, confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT):
        self.client = client
        self.confirmation_timeout = confirmation_timeout

    def transfer(
        self,
        handle: ImpersonationHandle,
        token: HexAddress | str,
        recipient: HexAddress | str,
        amount: TokenAmount | int,
    ) -> TxReceipt:
        """Transfer tokens from the handle address to the recipient.

        The transfer either lands in one mined transaction or not at all.

        :param handle:
            Active impersonation of the token holder

        :param amount:
            :py:class:`TokenAmount` or raw units

        :raise NotActive:
            The handle was released

        :raise InsufficientBalance:
            The holder has less than ``amount`` tokens

        :raise TransferReverted:
            The token contract reverted for another reason, e.g. a paused or blocklisting token

        :raise RpcFailure:
            Transport error or confirmation timeout

        :return:
            Transaction receipt
        """
        handle.require_active()

        raw_amount = amount.raw if isinstance(amount, TokenAmount) else amount
        assert type(raw_amount) == int, f"Raw amount must be int, got {type(raw_amount)}"
        if raw_amount < 0:
            raise ValueError(f"Cannot transfer a negative amount: {raw_amount}")

        source = handle.address
        recipient = Web3.to_checksum_address(recipient)

        logger.info("Transferring %d raw units of token %s from %s to %s", raw_amount, token, source, recipient)

        try:
            tx_hash = self.client.send_token_transfer(token, source, recipient, raw_amount)
            receipt = self.client.wait_for_receipt(tx_hash, timeout=self.confirmation_timeout)
        except TransferReverted as e:
            raise self._classify_revert(e, token, source, raw_amount) from e

        logger.info("Transfer included in block %s", receipt["blockNumber"])
        return receipt

    def _classify_revert(self, e: TransferReverted, token: str, source: str, raw_amount: int) -> TransferReverted:
        """Tell apart running out of tokens from other reverts."""
        context = dict(address=source, token=token, amount=raw_amount)

        try:
            balance = self.client.fetch_token_balance(token, source)
        except RpcFailure:
            logger.warning("Could not read the balance of %s after a failed transfer", source, exc_info=True)
            return TransferReverted(f"Transfer of {raw_amount} from {source} reverted: {e.revert_reason}", revert_reason=e.revert_reason, **context)

        if balance < raw_amount:
            return InsufficientBalance(
                f"{source} holds {balance} raw units of token {token}, cannot transfer {raw_amount}",
                balance=balance,
                revert_reason=e.revert_reason,
                **context,
            )

        return TransferReverted(f"Transfer of {raw_amount} from {source} reverted: {e.revert_reason}", revert_reason=e.revert_reason, **context)
