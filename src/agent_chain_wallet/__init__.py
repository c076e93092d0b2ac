"""Agent Chain Wallet: one EVM key, many chains.

Multi-chain client management, balance aggregation, transfers and
cross-chain bridges for automated agents, with a closed error taxonomy and
bounded retry.
"""

__version__ = "0.2.0"
