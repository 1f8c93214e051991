"""Web3 connection to a development node.

Every HTTP request carries a timeout, so a hung node
surfaces as :py:class:`fork_faucet.errors.RpcFailure` instead of blocking forever.
"""

import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util import Retry, parse_url
from web3 import HTTPProvider, Web3

from fork_faucet.utils import get_url_domain

logger = logging.getLogger(__name__)

#: (connect timeout, read timeout) in seconds
DEFAULT_HTTP_TIMEOUT = (3.0, 30.0)


def create_web3(
    json_rpc_url: str,
    request_timeout: float | tuple[float, float] = DEFAULT_HTTP_TIMEOUT,
    retries: int = 3,
    session: Optional[requests.Session] = None,
) -> Web3:
    """Create a Web3 instance for a development node JSON-RPC URL.

    Example:

    .. code-block:: python

        web3 = create_web3("http://localhost:8545")
        client = Web3ChainClient(web3)

    :param json_rpc_url:
        Node HTTP(S) URL

    :param request_timeout:
        Passed to :py:mod:`requests`. Either seconds or (connect, read) tuple.

    :param retries:
        How many times we retry failed connection attempts.

        Only connection errors are retried: a JSON-RPC request that reached the node
        is never replayed, as it may have been a transaction.

    :param session:
        Use a specific :py:mod:`requests` session.

        If not given create one with connection retry logic.
    """
    assert type(json_rpc_url) == str, f"JSON-RPC URL must be a string, got {type(json_rpc_url)}"

    url = parse_url(json_rpc_url.strip())
    if url.scheme not in ("http", "https"):
        raise ValueError(f"Only HTTP(S) JSON-RPC URLs are supported, got scheme {url.scheme}")

    if session is None:
        session = requests.Session()
        if retries >= 1:
            retry = Retry(connect=retries, read=0, backoff_factor=0.5)
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("http://", adapter)
            session.mount("https://", adapter)

    provider = HTTPProvider(
        url.url,
        request_kwargs={"timeout": request_timeout},
        session=session,
        exception_retry_configuration=None,
    )

    logger.info("Connecting to %s, timeout %s", get_url_domain(url.url), request_timeout)
    return Web3(provider)
