"""Multi-chain EVM wallet layer.

Chain registry, key material and detection, per-chain client caching,
ERC20 enumeration, LI.FI routing and the error taxonomy. Private keys are
held in process memory only; nothing here writes them to disk.
"""
