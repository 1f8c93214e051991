"""Fund accounts on an Anvil mainnet fork of Base.

To run tests in this module:

.. code-block:: shell

    export JSON_RPC_BASE=https://base-mainnet.g.alchemy.com/v2/...
    pytest -k test_anvil_fork

"""

import logging
import os
import shutil

import flaky
import pytest
from typer.testing import CliRunner

from fork_faucet import cli
from fork_faucet.amounts import TokenAmount
from fork_faucet.balances import BalanceOracle
from fork_faucet.chain_client import Web3ChainClient
from fork_faucet.config import FaucetConfig
from fork_faucet.constants import BASE_CHAIN_ID
from fork_faucet.errors import InsufficientBalance
from fork_faucet.funding import FundingOrchestrator, FundingRequest, FundingState
from fork_faucet.provider.anvil import AnvilLaunch, is_anvil, launch_anvil
from fork_faucet.provider.cheat_codes import CheatCodeDialect
from fork_faucet.provider.http import create_web3

JSON_RPC_BASE = os.environ.get("JSON_RPC_BASE")

pytestmark = pytest.mark.skipif(
    (JSON_RPC_BASE is None) or (shutil.which("anvil") is None),
    reason="Set JSON_RPC_BASE env and install anvil command to run these tests",
)


@pytest.fixture()
def anvil_base_fork() -> AnvilLaunch:
    """Fork Base mainnet."""
    launch = launch_anvil(JSON_RPC_BASE)
    try:
        yield launch
    finally:
        launch.close(log_level=logging.ERROR)


@pytest.fixture()
def chain_client(anvil_base_fork: AnvilLaunch) -> Web3ChainClient:
    web3 = create_web3(anvil_base_fork.json_rpc_url)
    return Web3ChainClient(web3)


@pytest.fixture()
def config(chain_client: Web3ChainClient) -> FaucetConfig:
    return FaucetConfig.for_chain(chain_client.chain_id)


@flaky.flaky
def test_fork_fund_usdc(chain_client: Web3ChainClient, config: FaucetConfig):
    """Whale USDC lands on Account #0."""
    assert chain_client.chain_id == BASE_CHAIN_ID
    assert is_anvil(chain_client.web3)
    assert chain_client.dialect == CheatCodeDialect.anvil

    recipient = chain_client.get_accounts()[0]
    holder_before = chain_client.fetch_token_balance(config.token, config.holder)
    amount = TokenAmount.from_human(100, 6)

    orchestrator = FundingOrchestrator(chain_client)
    result = orchestrator.fund(FundingRequest(recipient=recipient, amount=amount, source=config.holder, token=config.token))

    assert result.state == FundingState.released
    assert result.delta == amount
    assert chain_client.fetch_token_balance(config.token, config.holder) == holder_before - amount.raw

    reading = BalanceOracle(chain_client).query(config.token, recipient)
    assert reading.symbol == "USDC"
    assert reading.decimals == 6


@flaky.flaky
def test_fork_fund_more_than_held(chain_client: Web3ChainClient, config: FaucetConfig):
    """Asking more than the whale has reverts and leaves the whale released."""
    holder_balance = chain_client.fetch_token_balance(config.token, config.holder)
    amount = TokenAmount(holder_balance + 1, 6)
    recipient = chain_client.get_accounts()[1]
    recipient_before = chain_client.fetch_token_balance(config.token, recipient)

    orchestrator = FundingOrchestrator(chain_client)
    with pytest.raises(InsufficientBalance):
        orchestrator.fund(FundingRequest(recipient=recipient, amount=amount, source=config.holder, token=config.token))

    assert orchestrator.state == FundingState.transfer_failed
    assert chain_client.fetch_token_balance(config.token, recipient) == recipient_before


@flaky.flaky
def test_fork_cli(anvil_base_fork: AnvilLaunch, chain_client: Web3ChainClient):
    """get-usdc then check-usdc on the fork."""
    runner = CliRunner()
    recipient = chain_client.get_accounts()[0]
    config = FaucetConfig.for_chain(chain_client.chain_id)
    before = chain_client.fetch_token_balance(config.token, recipient)

    result = runner.invoke(cli.app, ["get-usdc", "--amount", "250", "--json-rpc-url", anvil_base_fork.json_rpc_url])
    assert result.exit_code == 0, result.output
    assert f"Successfully transferred 250 USDC to {recipient} (Account #0)" in result.output

    result = runner.invoke(cli.app, ["check-usdc", "--json-rpc-url", anvil_base_fork.json_rpc_url])
    assert result.exit_code == 0, result.output
    assert f"USDC Balance for {recipient} (Account #0):" in result.output
    assert chain_client.fetch_token_balance(config.token, recipient) == before + 250 * 10**6
