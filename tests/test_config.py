"""Faucet configuration defaults."""

import pytest

from fork_faucet.config import FaucetConfig
from fork_faucet.constants import BASE_CHAIN_ID, CONTRACT_ADDRESSES


def test_base_defaults():
    config = FaucetConfig.for_chain(BASE_CHAIN_ID)
    assert config.token == "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
    assert config.holder == "0x0B0A5886664376F59C351ba3f598C8A8B4D0A6f3"
    assert config.default_recipient is None
    assert config.gas_top_up == 10**18


def test_overrides():
    holder = CONTRACT_ADDRESSES[BASE_CHAIN_ID]["PYTH"].lower()
    config = FaucetConfig.for_chain(BASE_CHAIN_ID, holder=holder, token=None, confirmation_timeout=5.0)
    assert config.holder == CONTRACT_ADDRESSES[BASE_CHAIN_ID]["PYTH"]
    assert config.token == CONTRACT_ADDRESSES[BASE_CHAIN_ID]["USDC"]
    assert config.confirmation_timeout == 5.0


def test_unknown_chain():
    with pytest.raises(ValueError):
        FaucetConfig.for_chain(31337)


def test_unknown_chain_explicit_addresses():
    addresses = CONTRACT_ADDRESSES[BASE_CHAIN_ID]
    config = FaucetConfig.for_chain(31337, token=addresses["USDC"], holder=addresses["USDC_WHALE"])
    assert config.token == addresses["USDC"]
