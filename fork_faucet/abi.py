"""Bundled contract interfaces.

We ship ABI only, no bytecode: the faucet never deploys contracts,
it talks to the token contracts that already live on the forked chain.
"""

import json
from functools import lru_cache
from pathlib import Path

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

#: Where the ABI JSON files live
ABI_PATH = Path(__file__).resolve().parent / "abi"

#: ERC-20 interface used for all token calls
ERC20_ABI_FILE = "IERC20.json"


@lru_cache(maxsize=16)
def load_abi(fname: str) -> list[dict]:
    """Read the ABI entries of a bundled interface file.

    :param fname:
        JSON file under ``fork_faucet/abi``, e.g. ``IERC20.json``
    """
    with open(ABI_PATH / fname, "rt", encoding="utf-8") as f:
        return json.load(f)["abi"]


def get_erc20_contract(web3: Web3, address: HexAddress | str) -> Contract:
    """Wrap a token address as an ERC-20 contract proxy.

    :param address:
        Token address, checksummed or not
    """
    assert isinstance(web3, Web3), f"Got {type(web3)} instead of Web3"
    assert address, "get_erc20_contract() address was None"
    return web3.eth.contract(address=Web3.to_checksum_address(address), abi=load_abi(ERC20_ABI_FILE))
