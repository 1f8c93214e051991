"""Anvil integration.

`Anvil <https://book.getfoundry.sh/reference/anvil/>`__ is the local development node
from Foundry. We use it to fork a live chain, so that the faucet
can borrow real token holders of the forked network.

To install Anvil:

.. code-block:: shell

    curl -L https://foundry.paradigm.xyz | bash
    PATH=~/.foundry/bin:$PATH
    foundryup

If ``anvil`` refuses to terminate, kill it by its port:

.. code-block:: shell

    kill -SIGKILL $(lsof -ti:19999)
"""

import logging
import os
import shutil
import sys
import time
import warnings
from dataclasses import dataclass
from subprocess import DEVNULL, PIPE
from typing import Optional

import psutil
import requests
from web3 import HTTPProvider, Web3

from fork_faucet.utils import find_free_port, get_url_domain, is_localhost_port_listening, shutdown_hard

logger = logging.getLogger(__name__)


class InvalidArgumentWarning(Warning):
    """Unknown Anvil command line option was passed."""


#: Our argument names -> Anvil command line flags
CLI_FLAGS = {
    "port": "--port",
    "host": "--host",
    "fork": "--fork-url",
    "fork_block_number": "--fork-block-number",
    "chain_id": "--chain-id",
    "hardfork": "--hardfork",
    "block_time": "--block-time",
}


def build_command(cmd: str, **kwargs) -> list[str]:
    """Turn keyword arguments to an Anvil command line.

    ``None`` values are left out.
    """
    args = [cmd]
    for key, value in kwargs.items():
        if value is None:
            continue
        if key not in CLI_FLAGS:
            warnings.warn(f"Ignoring unknown anvil option {key}={value}", InvalidArgumentWarning)
            continue
        args += [CLI_FLAGS[key], str(value)]
    return args


def _start_process(args: list[str]) -> psutil.Popen:
    # Fork URLs carry API keys
    logger.info("Launching anvil: %s", " ".join(get_url_domain(a) if a.startswith("http") else a for a in args))

    # Windows deadlocks on full pipes
    out = DEVNULL if sys.platform == "win32" else PIPE
    return psutil.Popen(args, stdin=DEVNULL, stdout=out, stderr=out, env=os.environ | {"RUST_BACKTRACE": "1"})


def _wait_for_block(url: str, timeout: float, request_timeout: float) -> Optional[int]:
    """Poll until the node answers ``eth_blockNumber``.

    :return:
        Block number, or ``None`` if the node did not come up in time
    """
    web3 = Web3(HTTPProvider(url, request_kwargs={"timeout": request_timeout}))
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            return web3.eth.block_number
        except (requests.exceptions.ConnectionError, requests.exceptions.ReadTimeout):
            time.sleep(0.1)
    return None


@dataclass
class AnvilLaunch:
    """A running Anvil background process.

    Call :py:meth:`close` when done.
    """

    #: Local JSON-RPC port
    port: int

    #: Command line Anvil was started with
    cmd: list[str]

    #: Where Anvil listens to JSON-RPC
    json_rpc_url: str

    process: psutil.Popen

    def close(self, log_level: Optional[int] = None, block=True, block_timeout=30) -> tuple[bytes, bytes]:
        """Kill Anvil.

        :param log_level:
            Dump Anvil output to logging at this level

        :return:
            Anvil stdout, stderr
        """
        stdout, stderr = shutdown_hard(
            self.process,
            log_level=log_level,
            block=block,
            block_timeout=block_timeout,
            check_port=self.port,
        )
        logger.info("Anvil at %s shut down", self.json_rpc_url)
        return stdout, stderr


def launch_anvil(
    fork_url: Optional[str] = None,
    fork_block_number: Optional[int] = None,
    chain_id: Optional[int] = None,
    cmd="anvil",
    port: int | tuple = (19999, 29999, 25),
    hardfork: Optional[str] = None,
    launch_wait_seconds=20.0,
    attempts=3,
    test_request_timeout=3.0,
) -> AnvilLaunch:
    """Start Anvil as a mainnet fork or an empty test chain.

    Returns when Anvil answers JSON-RPC.

    Example that forks Base and funds an account from a USDC whale:

    .. code-block:: python

        launch = launch_anvil(os.environ["JSON_RPC_BASE"])
        try:
            client = Web3ChainClient(create_web3(launch.json_rpc_url))
            orchestrator = FundingOrchestrator(client)
            ...
        finally:
            launch.close()

    :param fork_url:
        HTTP JSON-RPC URL of the network we want to fork.
        If not given launch an empty test chain.

    :param fork_block_number:
        Fork at a specific block height. Needs an archive node.

    :param chain_id:
        Override the chain id. By default Anvil copies the forked chain id.

    :param port:
        Either a fixed port or (min port, max port, attempts) range to pick a random free port.

    :param launch_wait_seconds:
        How long we wait Anvil to start until giving up

    :param attempts:
        How many times we try to start Anvil.
        Launch may fail silently when the forked RPC throttles us.

    :param test_request_timeout:
        Timeout of the JSON-RPC requests polling for Anvil readiness

    :raise AssertionError:
        Anvil is not installed or did not come up
    """
    assert shutil.which(cmd) is not None, f"{cmd} command not in PATH {os.environ.get('PATH')}"

    if fork_block_number:
        assert fork_url, "launch_anvil(): fork_block_number given without fork_url"

    if isinstance(port, tuple):
        port = find_free_port(*port)
    else:
        assert not is_localhost_port_listening(port), f"localhost port {port} occupied, a zombie Anvil?\nRun to kill: kill -SIGKILL $(lsof -ti:{port})"

    url = f"http://localhost:{port}"
    args = build_command(
        cmd,
        port=port,
        fork=fork_url,
        fork_block_number=fork_block_number,
        chain_id=chain_id,
        hardfork=hardfork,
    )

    for attempt in range(1, attempts + 1):
        process = _start_process(args)
        block_number = _wait_for_block(url, launch_wait_seconds, test_request_timeout)
        if block_number is not None:
            logger.info("Anvil up at %s, block %s", url, f"{block_number:,}")
            return AnvilLaunch(port, args, url, process)

        logger.error("Anvil at %s did not answer within %f seconds, attempt %d/%d", url, launch_wait_seconds, attempt, attempts)
        stdout, stderr = shutdown_hard(process, log_level=logging.ERROR, block=True, check_port=port)

        # Output means Anvil itself failed, not the forked RPC
        if stdout:
            break

    raise AssertionError(f"Could not start Anvil with {' '.join(args[:1])} at {url} after {attempt} attempts")


def is_anvil(web3: Web3) -> bool:
    """Are we connected to Anvil.

    :return:
        True if ``web3_clientVersion`` looks like ``anvil/v0.2.0``
    """
    return "anvil/" in web3.client_version
