"""Configuration system for Agent Chain Wallet.

Loads settings from a YAML file, supports environment variable expansion,
and applies the ``EVM_*`` environment overrides on top.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from agent_chain_wallet.wallet.routing import LIFI_API_URL

logger = logging.getLogger("agent_chain_wallet.config")

DEFAULT_CHAINS = ["ethereum", "base"]


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class WalletConfig(BaseModel):
    """Signing key and the chains it is used on."""

    private_key: str = Field(default="", repr=False)  # ${EVM_PRIVATE_KEY}
    chains: list[str] = Field(default_factory=list)
    rpc_urls: dict[str, str] = Field(default_factory=dict)  # chain name -> RPC override
    default_chain: str = "ethereum"
    wait_for_confirmation: bool = False
    confirmation_timeout: float = 180.0

    @field_validator("chains")
    @classmethod
    def _lower_chains(cls, value: list[str]) -> list[str]:
        return [c.strip().lower() for c in value if c.strip()]

    @field_validator("rpc_urls")
    @classmethod
    def _lower_rpc_keys(cls, value: dict[str, str]) -> dict[str, str]:
        return {k.lower(): v for k, v in value.items()}

    def effective_chains(self) -> list[str]:
        """Configured chains, or the defaults when none are set."""
        if self.chains:
            return list(self.chains)
        logger.warning(
            f"No EVM chains configured, defaulting to {', '.join(DEFAULT_CHAINS)}"
        )
        return list(DEFAULT_CHAINS)


class RetryConfig(BaseModel):
    """Bounded retry for read-only network calls."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0)


class TokenConfig(BaseModel):
    """ERC20 enumeration through RPC introspection extensions."""

    enabled: bool = True
    introspection_hosts: list[str] = Field(default_factory=lambda: ["alchemy.com"])
    timeout: float = 15.0


class BridgeConfig(BaseModel):
    """LI.FI route provider settings."""

    api_url: str = LIFI_API_URL
    api_key: str = ""                 # ${LIFI_API_KEY}
    integrator: str = "agent-chain-wallet"
    slippage: float = Field(default=0.005, ge=0, le=1)
    max_price_impact: float = Field(default=0.4, ge=0, le=1)
    timeout: float = 30.0
    confirmation_timeout: float = 300.0


class AppConfig(BaseModel):
    """Root configuration object."""

    wallet: WalletConfig = Field(default_factory=WalletConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    tokens: TokenConfig = Field(default_factory=TokenConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def _env_chain_key(chain_name: str) -> str:
    return re.sub(r"[^A-Z0-9]+", "_", chain_name.upper())


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation. With no *path*, or a path that does not exist, defaults are
    used. Environment overrides are applied last.
    """
    if path is not None and path.exists():
        raw_text = path.read_text(encoding="utf-8")
        raw_data = yaml.safe_load(raw_text) or {}
        expanded = _expand_env_recursive(raw_data)
        config = AppConfig.model_validate(expanded)
    else:
        if path is not None:
            logger.info(f"Config file {path} not found, using defaults")
        config = AppConfig()
    return apply_env_overrides(config)


def apply_env_overrides(config: AppConfig, environ: Optional[dict[str, str]] = None) -> AppConfig:
    """Apply ``EVM_PRIVATE_KEY``, per-chain provider URLs and ``LIFI_API_KEY``.

    Per-chain RPC URLs are read from ``ETHEREUM_PROVIDER_<CHAIN>`` first,
    then ``EVM_PROVIDER_<CHAIN>``, with the chain name upper-cased and
    non-alphanumerics replaced by ``_``.
    """
    env = os.environ if environ is None else environ

    private_key = env.get("EVM_PRIVATE_KEY")
    if private_key:
        config.wallet.private_key = private_key

    chains_env = env.get("EVM_CHAINS")
    if chains_env:
        config.wallet.chains = [c.strip().lower() for c in chains_env.split(",") if c.strip()]

    names = set(config.wallet.chains) | set(config.wallet.rpc_urls) | set(DEFAULT_CHAINS)
    for name in sorted(names):
        key = _env_chain_key(name)
        url = env.get(f"ETHEREUM_PROVIDER_{key}") or env.get(f"EVM_PROVIDER_{key}")
        if url:
            config.wallet.rpc_urls[name] = url

    api_key = env.get("LIFI_API_KEY")
    if api_key:
        config.bridge.api_key = api_key

    return config
