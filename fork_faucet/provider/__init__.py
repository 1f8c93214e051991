"""JSON-RPC connections to development nodes.

- :py:mod:`fork_faucet.provider.http` for Web3 instances with bounded request timeouts

- :py:mod:`fork_faucet.provider.cheat_codes` for Anvil and Hardhat specific RPC methods

- :py:mod:`fork_faucet.provider.anvil` for launching forked chains
"""
