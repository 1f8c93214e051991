"""Revert reason of a mined, failed transaction.

Receipts do not carry the revert reason. We replay the transaction with ``eth_call``
on top of the latest block. On a development node nothing else moves the chain
between the failure and the replay, so the replay fails the same way.
"""

import logging

from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError

logger = logging.getLogger(__name__)

#: Placeholder when the replay does not revert
UNKNOWN_REVERT_REASON = "<could not extract the revert reason>"


def fetch_transaction_revert_reason(
    web3: Web3,
    tx_hash: HexBytes | str,
    unknown_error_message=UNKNOWN_REVERT_REASON,
) -> str:
    """Get the revert reason of a failed transaction by replaying it.

    :param unknown_error_message:
        Returned if the replay succeeds

    :return:
        E.g. ``execution reverted: ERC20: transfer amount exceeds balance``
    """
    tx = web3.eth.get_transaction(HexBytes(tx_hash))

    # Anvil and Hardhat expose the calldata as input
    replay = {
        "from": tx["from"],
        "to": tx["to"],
        "value": tx["value"],
        "gas": tx["gas"],
        "data": tx["input"],
    }

    try:
        web3.eth.call(replay)
    except ContractLogicError as e:
        return e.args[0] if e.args else str(e)

    logger.warning("Replay of failed transaction %s did not revert, mined in block %s", HexBytes(tx_hash).hex(), tx["blockNumber"])
    return unknown_error_message
