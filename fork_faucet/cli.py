"""fork-faucet command line.

Fund test accounts on a local Base mainnet fork:

.. code-block:: shell

    # Terminal 1: fork Base mainnet at http://localhost:8545
    export JSON_RPC_BASE=https://base-mainnet.g.alchemy.com/v2/...
    fork-faucet fork

    # Terminal 2
    fork-faucet get-usdc --amount 1000
    fork-faucet check-usdc

Without ``--address`` the first node account (Account #0) is used.
"""

import logging
import time
from typing import Optional

import typer
from web3 import Web3

from fork_faucet.amounts import TokenAmount
from fork_faucet.balances import BalanceOracle
from fork_faucet.chain_client import ChainClient, Web3ChainClient
from fork_faucet.config import FaucetConfig
from fork_faucet.errors import FaucetError
from fork_faucet.funding import FundingOrchestrator, FundingRequest
from fork_faucet.provider.anvil import launch_anvil
from fork_faucet.provider.http import DEFAULT_HTTP_TIMEOUT, create_web3
from fork_faucet.utils import get_url_domain, setup_console_logging

logger = logging.getLogger(__name__)

app = typer.Typer(help="Fund test accounts with ERC-20 tokens on a forked development chain.")

DEFAULT_JSON_RPC_URL = "http://localhost:8545"


def create_chain_client(json_rpc_url: str, request_timeout=DEFAULT_HTTP_TIMEOUT) -> ChainClient:
    """Connect to the development node."""
    web3 = create_web3(json_rpc_url, request_timeout=request_timeout)
    return Web3ChainClient(web3)


def resolve_recipient(client: ChainClient, config: FaucetConfig, address: Optional[str]) -> tuple[str, bool]:
    """Pick the recipient address.

    :return:
        (address, is Account #0) tuple
    """
    if address:
        return Web3.to_checksum_address(address), False

    if config.default_recipient:
        return config.default_recipient, False

    accounts = client.get_accounts()
    if not accounts:
        raise FaucetError("The node has no accounts, give --address")
    return Web3.to_checksum_address(accounts[0]), True


def _fail(e: Exception):
    typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(code=1)


@app.command("get-usdc")
def get_usdc(
    *,
    amount: str = typer.Option(..., help="Amount in token units, not raw units, e.g. 1000 or 0.5"),
    address: Optional[str] = typer.Option(None, help="The address to receive tokens (defaults to Account #0)"),
    json_rpc_url: str = typer.Option(DEFAULT_JSON_RPC_URL, envvar="JSON_RPC_URL", help="Development node JSON-RPC URL"),
    token: Optional[str] = typer.Option(None, envvar="FAUCET_TOKEN", help="ERC-20 token address, default USDC of the chain"),
    holder: Optional[str] = typer.Option(None, envvar="FAUCET_HOLDER", help="Whale address holding the token"),
    log_level: Optional[str] = typer.Option(None, envvar="LOG_LEVEL", help="Python logging level"),
):
    """Get USDC tokens for testing."""
    setup_console_logging(log_level=log_level)

    try:
        client = create_chain_client(json_rpc_url)
        config = FaucetConfig.for_chain(client.chain_id, token=token, holder=holder)
        recipient, is_default = resolve_recipient(client, config, address)

        oracle = BalanceOracle(client)
        decimals, symbol = oracle.fetch_token_details(config.token)
        request = FundingRequest(
            recipient=recipient,
            amount=TokenAmount.from_human(amount, decimals),
            source=config.holder,
            token=config.token,
        )

        orchestrator = FundingOrchestrator(
            client,
            gas_top_up=config.gas_top_up,
            confirmation_timeout=config.confirmation_timeout,
            balance_oracle=oracle,
        )
        orchestrator.fund(request)
    except (FaucetError, ValueError) as e:
        _fail(e)

    suffix = " (Account #0)" if is_default else ""
    typer.echo(f"Successfully transferred {request.amount} {symbol} to {recipient}{suffix}")


@app.command("check-usdc")
def check_usdc(
    *,
    address: Optional[str] = typer.Option(None, help="The address to check (defaults to Account #0)"),
    json_rpc_url: str = typer.Option(DEFAULT_JSON_RPC_URL, envvar="JSON_RPC_URL", help="Development node JSON-RPC URL"),
    token: Optional[str] = typer.Option(None, envvar="FAUCET_TOKEN", help="ERC-20 token address, default USDC of the chain"),
    holder: Optional[str] = typer.Option(None, envvar="FAUCET_HOLDER", help="Whale address holding the token"),
    log_level: Optional[str] = typer.Option(None, envvar="LOG_LEVEL", help="Python logging level"),
):
    """Check USDC balance of an address."""
    setup_console_logging(log_level=log_level)

    try:
        client = create_chain_client(json_rpc_url)
        config = FaucetConfig.for_chain(client.chain_id, token=token, holder=holder)
        target, is_default = resolve_recipient(client, config, address)
        reading = BalanceOracle(client).query(config.token, target)
    except (FaucetError, ValueError) as e:
        _fail(e)

    suffix = " (Account #0)" if is_default else ""
    typer.echo(f"{reading.symbol} Balance for {target}{suffix}: {reading.format()}")


@app.command()
def fork(
    *,
    fork_url: str = typer.Option(..., envvar="JSON_RPC_BASE", help="JSON-RPC URL of the chain to fork"),
    fork_block_number: Optional[int] = typer.Option(None, help="Fork at this block, needs an archive node"),
    port: int = typer.Option(8545, help="Local JSON-RPC port"),
    log_level: Optional[str] = typer.Option(None, envvar="LOG_LEVEL", help="Python logging level"),
):
    """Run an Anvil mainnet fork until interrupted."""
    setup_console_logging(default_log_level="info", log_level=log_level)

    logger.info("Forking %s", get_url_domain(fork_url))
    launch = launch_anvil(fork_url, fork_block_number=fork_block_number, port=port)
    typer.echo(f"Forked chain running at {launch.json_rpc_url}, Ctrl+C to stop")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down the fork")
    finally:
        launch.close()


def main():
    app()


if __name__ == "__main__":
    main()
