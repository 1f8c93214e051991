"""Faucet configuration.

The funding components take every parameter as an argument.
:py:class:`FaucetConfig` collects them in one place for the command line
and for test fixtures.
"""

from dataclasses import dataclass, replace
from typing import Optional

from eth_typing import HexAddress
from web3 import Web3

from fork_faucet.chain_client import DEFAULT_CONFIRMATION_TIMEOUT
from fork_faucet.constants import CONTRACT_ADDRESSES
from fork_faucet.gas_funding import DEFAULT_GAS_TOP_UP
from fork_faucet.provider.http import DEFAULT_HTTP_TIMEOUT


@dataclass(slots=True)
class FaucetConfig:
    """Which token to hand out, from whom, and how patiently."""

    #: ERC-20 token to fund with
    token: HexAddress

    #: Whale account holding the token
    holder: HexAddress

    #: Recipient when none is given.
    #: ``None`` means the first node managed account.
    default_recipient: Optional[HexAddress] = None

    #: Native balance set on the holder before transferring, wei
    gas_top_up: int = DEFAULT_GAS_TOP_UP

    #: HTTP (connect, read) timeout for JSON-RPC requests, seconds
    request_timeout: tuple[float, float] = DEFAULT_HTTP_TIMEOUT

    #: How long to wait for the transfer to be mined, seconds
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT

    def __post_init__(self):
        self.token = Web3.to_checksum_address(self.token)
        self.holder = Web3.to_checksum_address(self.holder)
        if self.default_recipient:
            self.default_recipient = Web3.to_checksum_address(self.default_recipient)
        assert type(self.gas_top_up) == int, f"gas_top_up must be int wei, got {type(self.gas_top_up)}"
        assert self.confirmation_timeout > 0, f"Bad confirmation timeout {self.confirmation_timeout}"

    @classmethod
    def for_chain(cls, chain_id: int, **overrides) -> "FaucetConfig":
        """Default USDC faucet for a chain.

        Overrides that are ``None`` are ignored, so command line options can be passed through as is.

        :param overrides:
            Any :py:class:`FaucetConfig` field

        :raise ValueError:
            No known addresses for this chain and no ``token`` and ``holder`` overrides given
        """
        overrides = {k: v for k, v in overrides.items() if v is not None}
        addresses = CONTRACT_ADDRESSES.get(chain_id)

        if addresses is None:
            if "token" in overrides and "holder" in overrides:
                return cls(**overrides)
            raise ValueError(f"No faucet addresses known for chain {chain_id}, give token and holder explicitly")

        config = cls(token=addresses["USDC"], holder=addresses["USDC_WHALE"])
        return replace(config, **overrides)
