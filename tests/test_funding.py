"""Fund a test account from a whale, end to end on the in-memory node."""

import logging

import pytest

from fork_faucet.amounts import TokenAmount
from fork_faucet.errors import InsufficientBalance, RpcFailure, UnsupportedNode
from fork_faucet.funding import FundingOrchestrator, FundingRequest, FundingState, get_holder_lock
from fork_faucet.testing import InMemoryChainClient


@pytest.fixture()
def orchestrator(client, balance_oracle) -> FundingOrchestrator:
    return FundingOrchestrator(client, confirmation_timeout=5, balance_oracle=balance_oracle)


def test_fund_half_of_holdings(client: InMemoryChainClient, usdc, whale, recipient, orchestrator):
    """Holder has 1,000,000 raw units, we move 500,000."""
    client.mint(usdc, whale, 1_000_000)

    request = FundingRequest(recipient=recipient, amount=TokenAmount(500_000, 6), source=whale, token=usdc)
    result = orchestrator.fund(request)

    assert client.fetch_token_balance(usdc, recipient) == 500_000
    assert client.fetch_token_balance(usdc, whale) == 500_000
    assert result.recipient_balance_before.raw_balance.raw == 0
    assert result.recipient_balance_after.raw_balance.raw == 500_000
    assert result.delta == TokenAmount(500_000, 6)
    assert result.state == FundingState.released
    assert result.block_number == client.block_number
    assert result.tx_hash in client.receipts


def test_fund_conserves_tokens(client: InMemoryChainClient, usdc, funded_whale, recipient, orchestrator):
    """Whatever the recipient gains, the holder loses."""
    client.mint(usdc, recipient, 42)
    holder_before = client.fetch_token_balance(usdc, funded_whale)

    amount = TokenAmount.from_human("1234.567891", 6)
    result = orchestrator.fund(FundingRequest(recipient=recipient, amount=amount, source=funded_whale, token=usdc))

    assert result.delta == amount
    assert client.fetch_token_balance(usdc, recipient) == 42 + amount.raw
    assert client.fetch_token_balance(usdc, funded_whale) == holder_before - amount.raw


def test_fund_state_history(usdc, funded_whale, recipient, orchestrator):
    orchestrator.fund(FundingRequest(recipient=recipient, amount=TokenAmount(1, 6), source=funded_whale, token=usdc))
    assert orchestrator.state_history == [
        FundingState.idle,
        FundingState.impersonating,
        FundingState.funded,
        FundingState.transferred,
        FundingState.released,
    ]


def test_fund_releases_impersonation(client: InMemoryChainClient, usdc, funded_whale, recipient, orchestrator):
    orchestrator.fund(FundingRequest(recipient=recipient, amount=TokenAmount(1, 6), source=funded_whale, token=usdc))
    assert not client.is_impersonated(funded_whale)
    assert not orchestrator.impersonation.is_impersonating(funded_whale)


def test_fund_tops_up_gas(client: InMemoryChainClient, usdc, funded_whale, recipient, orchestrator):
    """The whale starts with no native currency and pays gas out of the top up."""
    assert client.get_balance(funded_whale) == 0
    orchestrator.fund(FundingRequest(recipient=recipient, amount=TokenAmount(1, 6), source=funded_whale, token=usdc))
    assert 0 < client.get_balance(funded_whale) < 10**18


def test_fund_empty_holder(client: InMemoryChainClient, usdc, whale, recipient, orchestrator):
    """Holder has nothing, funding a single raw unit fails and nothing moves."""
    request = FundingRequest(recipient=recipient, amount=TokenAmount(1, 6), source=whale, token=usdc)

    with pytest.raises(InsufficientBalance) as exc_info:
        orchestrator.fund(request)

    assert exc_info.value.balance == 0
    assert client.fetch_token_balance(usdc, recipient) == 0
    assert orchestrator.state == FundingState.transfer_failed
    assert orchestrator.state.is_failure()
    assert not client.is_impersonated(whale)
    assert orchestrator.impersonation.active_handles == {}


def test_fund_unsupported_node(whale):
    """A node without cheat codes fails at the first step."""
    client = InMemoryChainClient(supports_impersonation=False)
    usdc = client.deploy_token("USDC", 6)
    orchestrator = FundingOrchestrator(client)

    with pytest.raises(UnsupportedNode):
        orchestrator.fund(FundingRequest(recipient=client.accounts[0], amount=TokenAmount(1, 6), source=whale, token=usdc))

    assert orchestrator.state == FundingState.impersonation_failed
    assert orchestrator.state_history == [FundingState.idle, FundingState.impersonation_failed]


def test_fund_gas_top_up_fails(whale):
    """Impersonation is released when the balance override is missing."""
    client = InMemoryChainClient(supports_set_balance=False)
    usdc = client.deploy_token("USDC", 6)
    client.mint(usdc, whale, 1_000)
    orchestrator = FundingOrchestrator(client)

    with pytest.raises(UnsupportedNode):
        orchestrator.fund(FundingRequest(recipient=client.accounts[0], amount=TokenAmount(1, 6), source=whale, token=usdc))

    assert orchestrator.state == FundingState.funding_failed
    assert not client.is_impersonated(whale)


def test_fund_propagates_same_error(client: InMemoryChainClient, usdc, funded_whale, recipient, orchestrator):
    """The caller sees the exact exception object raised by the node gateway."""
    error = RpcFailure("Connection reset by peer")
    client.inject_failure("send_token_transfer", error)

    with pytest.raises(RpcFailure) as exc_info:
        orchestrator.fund(FundingRequest(recipient=recipient, amount=TokenAmount(1, 6), source=funded_whale, token=usdc))

    assert exc_info.value is error
    assert not client.is_impersonated(funded_whale)


def test_fund_balance_read_fails_after_transfer(client: InMemoryChainClient, usdc, funded_whale, recipient, orchestrator):
    """The transfer landed but the closing balance read fails: the error carries the transfer hash."""
    error = RpcFailure("Connection reset by peer")
    # First read is the balance before the transfer
    client.inject_failure("fetch_token_balance", error, skip=1)

    with pytest.raises(RpcFailure) as exc_info:
        orchestrator.fund(FundingRequest(recipient=recipient, amount=TokenAmount(1_000, 6), source=funded_whale, token=usdc))

    assert exc_info.value is error
    assert exc_info.value.tx_hash in client.receipts
    assert client.receipts[exc_info.value.tx_hash]["status"] == 1
    assert client.fetch_token_balance(usdc, recipient) == 1_000
    assert orchestrator.state == FundingState.released
    assert not client.is_impersonated(funded_whale)


def test_fund_release_failure_logged(client: InMemoryChainClient, usdc, whale, recipient, orchestrator, caplog):
    """Transfer and release both fail: the transfer error propagates, the release error is logged."""
    client.inject_failure("stop_impersonating_account", RpcFailure("Connection reset by peer"))

    with caplog.at_level(logging.ERROR):
        with pytest.raises(InsufficientBalance):
            orchestrator.fund(FundingRequest(recipient=recipient, amount=TokenAmount(1, 6), source=whale, token=usdc))

    assert "Could not release impersonation" in caplog.text


def test_fund_decimals_mismatch(usdc, funded_whale, recipient, orchestrator):
    """An 18 decimal amount for a 6 decimal token is a programming error."""
    with pytest.raises(ValueError):
        orchestrator.fund(FundingRequest(recipient=recipient, amount=TokenAmount(10**18, 18), source=funded_whale, token=usdc))


def test_funding_request_checksums(usdc, whale, recipient):
    request = FundingRequest(recipient=recipient.lower(), amount=TokenAmount(1, 6), source=whale.lower(), token=usdc.lower())
    assert request.recipient == recipient
    assert request.source == whale
    assert request.token == usdc


def test_holder_lock_case_insensitive(whale):
    assert get_holder_lock(whale) is get_holder_lock(whale.lower())
