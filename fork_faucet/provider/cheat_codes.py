"""Development node cheat code RPC calls.

Anvil and Hardhat Network both let a test take over any account
and rewrite native balances. The method names differ by prefix:

- Anvil: ``anvil_impersonateAccount``, ``anvil_stopImpersonatingAccount``, ``anvil_setBalance``

- Hardhat: ``hardhat_impersonateAccount``, ``hardhat_stopImpersonatingAccount``, ``hardhat_setBalance``

Anvil also answers to the ``hardhat_`` aliases, so Hardhat dialect is the safe choice
when the node cannot be identified.

- `Anvil custom methods <https://book.getfoundry.sh/reference/anvil/>`__

- `Hardhat Network reference <https://hardhat.org/hardhat-network/docs/reference>`__
"""

import enum
import logging
from typing import Any, Optional

from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import MethodUnavailable, Web3Exception

from fork_faucet.errors import RpcFailure, UnsupportedNode

logger = logging.getLogger(__name__)

#: JSON-RPC 2.0 error code for an unknown method
METHOD_NOT_FOUND = -32601

#: Error message fragments nodes use when they do not know a method.
#: Not all nodes use -32601.
_UNSUPPORTED_MESSAGES = (
    "method not found",
    "does not exist",
    "not supported",
    "unsupported method",
    "not available",
)


class CheatCodeDialect(enum.Enum):
    """Which RPC method prefix the node uses."""

    anvil = "anvil"

    hardhat = "hardhat"

    def method(self, name: str) -> str:
        """Get the full RPC method name, e.g. ``anvil_setBalance``."""
        return f"{self.value}_{name}"


def detect_dialect(web3: Web3) -> CheatCodeDialect:
    """Identify the development node from ``web3_clientVersion``.

    - Anvil reports ``anvil/v0.2.0``

    - Hardhat reports ``HardhatNetwork/2.22.0/@ethereumjs/vm/...``

    Unknown nodes, and nodes that do not answer ``web3_clientVersion``, get Hardhat dialect.

    :raise RpcFailure:
        Cannot reach the node, or a malformed response
    """
    try:
        client_version = web3.client_version
    except MethodUnavailable:
        logger.warning("Node does not implement web3_clientVersion, assuming Hardhat cheat codes")
        return CheatCodeDialect.hardhat
    except (RequestException, Web3Exception, ValueError) as e:
        raise RpcFailure(f"Could not read client version: {e}") from e

    if "anvil/" in client_version.lower():
        return CheatCodeDialect.anvil

    if "hardhat" not in client_version.lower():
        logger.warning("Unknown development node %s, assuming Hardhat cheat codes", client_version)

    return CheatCodeDialect.hardhat


def is_unsupported_method_error(error: dict) -> bool:
    """Does a JSON-RPC error payload tell the method is not available on this node."""
    if error.get("code") == METHOD_NOT_FOUND:
        return True
    message = str(error.get("message", "")).lower()
    return any(m in message for m in _UNSUPPORTED_MESSAGES)


def make_cheat_code_request(
    web3: Web3,
    method: str,
    args: Optional[list] = None,
    address: Optional[str] = None,
) -> Any:
    """Make a request to a special named development node JSON-RPC endpoint.

    Bypasses web3.py middleware, as cheat code methods are unknown to it.

    :param method:
        RPC endpoint name, e.g. ``anvil_impersonateAccount``

    :param args:
        JSON-RPC call arguments

    :param address:
        Account the call concerns, for error context

    :return:
        RPC result

    :raise UnsupportedNode:
        The node does not have this method

    :raise RpcFailure:
        Transport error or any other RPC error response
    """
    args = list(args or [])

    logger.debug("Cheat code request %s %s", method, args)

    try:
        response = web3.provider.make_request(method, args)  # type: ignore
    except RequestException as e:
        raise RpcFailure(f"{method} failed, node unreachable: {e}", address=address) from e
    except ValueError as e:
        # Non-JSON body, e.g. an HTML error page from a proxy
        raise RpcFailure(f"{method} returned a malformed response: {e}", address=address) from e

    if not isinstance(response, dict):
        raise RpcFailure(f"{method} returned a malformed response: {response!r}", address=address)

    if "error" in response:
        error = response["error"]
        if not isinstance(error, dict):
            raise RpcFailure(f"{method} failed: {error}", address=address)

        if is_unsupported_method_error(error):
            raise UnsupportedNode(f"Node does not support {method}: {error.get('message')}", address=address)

        raise RpcFailure(f"{method} failed: {error.get('message')}", address=address)

    if "result" not in response:
        raise RpcFailure(f"{method} returned a malformed response: {response!r}", address=address)

    return response["result"]
