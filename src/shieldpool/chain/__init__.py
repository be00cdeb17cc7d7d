"""
Chain adapters for shieldpool.

Web3-backed implementations of the ledger and event source interfaces.
"""

from .web3_pool import EVENT_SIGNATURES, POOL_ABI, Web3PoolConfig, Web3PoolContract

__all__ = [
    "EVENT_SIGNATURES",
    "POOL_ABI",
    "Web3PoolConfig",
    "Web3PoolContract",
]
