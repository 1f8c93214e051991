"""Node gateway used by the funding service.

The funding components never talk to web3.py directly.
They go through :py:class:`ChainClient`, which

- Exposes only the RPC surface the service needs: impersonation,
  native balance override, ERC-20 reads and a signed-as-holder ERC-20 transfer

- Translates transport and node errors to :py:mod:`fork_faucet.errors`

:py:class:`Web3ChainClient` is the production implementation.
:py:class:`fork_faucet.testing.InMemoryChainClient` is an in-memory dev node for unit tests.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from functools import cached_property
from typing import Optional

from eth_typing import HexAddress
from hexbytes import HexBytes
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.types import TxReceipt

from fork_faucet.abi import get_erc20_contract
from fork_faucet.errors import FaucetError, RpcFailure, TransferReverted
from fork_faucet.provider.cheat_codes import CheatCodeDialect, detect_dialect, make_cheat_code_request
from fork_faucet.revert_reason import fetch_transaction_revert_reason

logger = logging.getLogger(__name__)

#: How long we wait for a transaction to be mined by default, seconds
DEFAULT_CONFIRMATION_TIMEOUT = 60.0


class ChainClient(ABC):
    """RPC surface of a development node the funding service consumes."""

    @property
    @abstractmethod
    def chain_id(self) -> int:
        """EVM chain id of the node."""
        pass

    @abstractmethod
    def impersonate_account(self, address: HexAddress | str) -> None:
        """Allow sending transactions as ``address`` without its private key."""
        pass

    @abstractmethod
    def stop_impersonating_account(self, address: HexAddress | str) -> None:
        """Revoke the impersonation of ``address``."""
        pass

    @abstractmethod
    def set_balance(self, address: HexAddress | str, wei: int) -> None:
        """Overwrite the native currency balance of ``address``."""
        pass

    @abstractmethod
    def get_balance(self, address: HexAddress | str) -> int:
        """Native currency balance in wei."""
        pass

    @abstractmethod
    def get_accounts(self) -> list[HexAddress]:
        """Node managed test accounts, ``eth_accounts``."""
        pass

    @abstractmethod
    def fetch_token_decimals(self, token: HexAddress | str) -> int:
        """ERC-20 ``decimals()``."""
        pass

    @abstractmethod
    def fetch_token_symbol(self, token: HexAddress | str) -> str:
        """ERC-20 ``symbol()``."""
        pass

    @abstractmethod
    def fetch_token_balance(self, token: HexAddress | str, address: HexAddress | str) -> int:
        """ERC-20 ``balanceOf()`` in raw units."""
        pass

    @abstractmethod
    def send_token_transfer(
        self,
        token: HexAddress | str,
        source: HexAddress | str,
        recipient: HexAddress | str,
        raw_amount: int,
    ) -> HexBytes:
        """Broadcast ERC-20 ``transfer(recipient, raw_amount)`` sent from ``source``.

        ``source`` must be impersonated or a node managed account.

        :raise TransferReverted:
            The transfer reverted already in the gas estimation

        :return:
            Transaction hash
        """
        pass

    @abstractmethod
    def wait_for_receipt(self, tx_hash: HexBytes, timeout: float = DEFAULT_CONFIRMATION_TIMEOUT) -> TxReceipt:
        """Wait until a transaction is mined.

        :raise TransferReverted:
            The transaction was mined, but reverted

        :raise RpcFailure:
            Not mined within ``timeout`` seconds
        """
        pass


@contextmanager
def translate_rpc_errors(operation: str, address=None, token=None, amount=None):
    """Map web3.py and transport exceptions to :py:class:`RpcFailure`.

    ``ValueError`` covers ``json.JSONDecodeError`` from a non-JSON response body.
    Our own errors pass through as is.
    """
    try:
        yield
    except FaucetError:
        raise
    except TimeExhausted as e:
        raise RpcFailure(f"{operation} timed out: {e}", address=address, token=token, amount=amount) from e
    except (RequestException, Web3Exception, ValueError) as e:
        raise RpcFailure(f"{operation} failed: {e}", address=address, token=token, amount=amount) from e


class Web3ChainClient(ChainClient):
    """ChainClient over a web3.py connection to Anvil or Hardhat.

    Example:

    .. code-block:: python

        web3 = create_web3("http://localhost:8545")
        client = Web3ChainClient(web3)
        client.impersonate_account(whale)
    """

    def __init__(self, web3: Web3, dialect: Optional[CheatCodeDialect] = None):
        """
        :param web3:
            Connection to a development node

        :param dialect:
            Cheat code RPC method prefix.
            If not given, detect from the node client version on the first cheat code call.
        """
        assert isinstance(web3, Web3), f"Expected Web3, got {type(web3)}"
        self.web3 = web3
        self._dialect = dialect

    def __repr__(self):
        return f"<Web3ChainClient {self.web3.provider}>"

    @property
    def dialect(self) -> CheatCodeDialect:
        if self._dialect is None:
            self._dialect = detect_dialect(self.web3)
            logger.info("Using %s cheat codes", self._dialect.value)
        return self._dialect

    @cached_property
    def chain_id(self) -> int:
        with translate_rpc_errors("eth_chainId"):
            return self.web3.eth.chain_id

    def impersonate_account(self, address: HexAddress | str) -> None:
        address = Web3.to_checksum_address(address)
        make_cheat_code_request(self.web3, self.dialect.method("impersonateAccount"), [address], address=address)

    def stop_impersonating_account(self, address: HexAddress | str) -> None:
        address = Web3.to_checksum_address(address)
        make_cheat_code_request(self.web3, self.dialect.method("stopImpersonatingAccount"), [address], address=address)

    def set_balance(self, address: HexAddress | str, wei: int) -> None:
        assert type(wei) == int, f"Wei amount must be int, got {type(wei)}"
        address = Web3.to_checksum_address(address)
        make_cheat_code_request(self.web3, self.dialect.method("setBalance"), [address, hex(wei)], address=address)

    def get_balance(self, address: HexAddress | str) -> int:
        address = Web3.to_checksum_address(address)
        with translate_rpc_errors("eth_getBalance", address=address):
            return self.web3.eth.get_balance(address)

    def get_accounts(self) -> list[HexAddress]:
        with translate_rpc_errors("eth_accounts"):
            return list(self.web3.eth.accounts)

    def fetch_token_decimals(self, token: HexAddress | str) -> int:
        with translate_rpc_errors("decimals()", token=token):
            return get_erc20_contract(self.web3, token).functions.decimals().call()

    def fetch_token_symbol(self, token: HexAddress | str) -> str:
        with translate_rpc_errors("symbol()", token=token):
            return get_erc20_contract(self.web3, token).functions.symbol().call()

    def fetch_token_balance(self, token: HexAddress | str, address: HexAddress | str) -> int:
        address = Web3.to_checksum_address(address)
        with translate_rpc_errors("balanceOf()", address=address, token=token):
            return get_erc20_contract(self.web3, token).functions.balanceOf(address).call()

    def send_token_transfer(
        self,
        token: HexAddress | str,
        source: HexAddress | str,
        recipient: HexAddress | str,
        raw_amount: int,
    ) -> HexBytes:
        source = Web3.to_checksum_address(source)
        recipient = Web3.to_checksum_address(recipient)
        context = dict(address=source, token=token, amount=raw_amount)
        with translate_rpc_errors("transfer()", **context):
            func = get_erc20_contract(self.web3, token).functions.transfer(recipient, raw_amount)
            try:
                tx_hash = func.transact({"from": source})
            except ContractLogicError as e:
                reason = e.args[0] if e.args else str(e)
                raise TransferReverted(f"Transfer of {raw_amount} from {source} reverted: {reason}", revert_reason=reason, **context) from e

        logger.debug("Broadcasted transfer %s", tx_hash.hex())
        return tx_hash

    def wait_for_receipt(self, tx_hash: HexBytes, timeout: float = DEFAULT_CONFIRMATION_TIMEOUT) -> TxReceipt:
        with translate_rpc_errors(f"Waiting for {tx_hash.hex()}"):
            receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
            if receipt["status"] == 0:
                reason = fetch_transaction_revert_reason(self.web3, tx_hash)
                raise TransferReverted(f"Transaction {tx_hash.hex()} reverted: {reason}", revert_reason=reason)
        return receipt
