"""Well-known contract addresses of the chains we fork."""

from typing import TypedDict

from eth_typing import HexAddress


class ContractAddresses(TypedDict):
    """Addresses we need on a forked chain."""

    #: USDC ERC-20 token
    USDC: HexAddress

    #: Account holding a lot of USDC, impersonated to fund test accounts
    USDC_WHALE: HexAddress

    #: Pyth price feed contract
    PYTH: HexAddress


#: Base mainnet chain id
BASE_CHAIN_ID = 8453

#: Contract addresses keyed by chain id
CONTRACT_ADDRESSES: dict[int, ContractAddresses] = {
    # Base
    BASE_CHAIN_ID: {
        "USDC": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        # https://basescan.org/token/0x833589fcd6edb6e08f4c7c32d4f71b54bda02913#balances
        "USDC_WHALE": "0x0B0A5886664376F59C351ba3f598C8A8B4D0A6f3",
        "PYTH": "0x8250f4aF4B972684F7b336503E2D6dFeDeB1487a",
    },
}
