"""Web3 read and signing clients for a single EVM chain."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.middleware import ExtraDataToPOAMiddleware

from agent_chain_wallet.wallet.chains import ChainDescriptor

logger = logging.getLogger("agent_chain_wallet.wallet.client")

ERC20_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]

# Priority fee used when the node reports an EIP-1559 base fee.
_PRIORITY_FEE_GWEI = 1.5


def build_web3(rpc_url: str, chain_id: int | None = None) -> AsyncWeb3:
    """Create an async Web3 instance for *rpc_url*.

    Injects POA middleware for every chain other than Ethereum mainnet.
    """
    w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
    if chain_id != 1:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return w3


def _as_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.startswith("0x") else int(text)


class SigningClient:
    """A Web3 connection bound to one signing account on one chain."""

    def __init__(self, web3: AsyncWeb3, account: LocalAccount, chain: ChainDescriptor) -> None:
        self.web3 = web3
        self.account = account
        self.chain = chain

    @property
    def address(self) -> str:
        return self.account.address

    async def _apply_fees(self, tx: dict[str, Any]) -> None:
        """Fill gas fields, EIP-1559 first with a legacy gas price fallback."""
        eth = self.web3.eth
        try:
            latest = await eth.get_block("latest")
            base_fee = latest.get("baseFeePerGas")
            if base_fee is None:
                raise ValueError("No baseFeePerGas")
            max_priority = Web3.to_wei(_PRIORITY_FEE_GWEI, "gwei")
            tx["maxFeePerGas"] = base_fee * 2 + max_priority
            tx["maxPriorityFeePerGas"] = max_priority
        except Exception:
            tx.pop("maxFeePerGas", None)
            tx.pop("maxPriorityFeePerGas", None)
            tx["gasPrice"] = await eth.gas_price

    async def send_transaction(
        self,
        to: str,
        value: int = 0,
        data: bytes | str = b"",
        gas: int | None = None,
        fees: dict[str, int] | None = None,
    ) -> str:
        """Build, sign and broadcast a transaction. Returns the 0x hash."""
        eth = self.web3.eth
        tx: dict[str, Any] = {
            "from": self.account.address,
            "to": Web3.to_checksum_address(to),
            "value": int(value),
            "nonce": await eth.get_transaction_count(self.account.address, "pending"),
            "chainId": self.chain.chain_id,
        }
        if data:
            tx["data"] = data

        if fees:
            tx.update(fees)
        else:
            await self._apply_fees(tx)

        tx["gas"] = gas if gas is not None else await eth.estimate_gas(tx)

        signed = self.account.sign_transaction(tx)
        tx_hash = Web3.to_hex(await eth.send_raw_transaction(signed.raw_transaction))
        logger.info(f"Sent transaction {tx_hash} on {self.chain.name}")
        return tx_hash

    async def send_native(self, to: str, value: int) -> str:
        return await self.send_transaction(to=to, value=value)

    async def send_erc20(self, token_address: str, to: str, amount: int) -> str:
        contract = self.web3.eth.contract(
            address=Web3.to_checksum_address(token_address), abi=ERC20_ABI
        )
        data = contract.encode_abi("transfer", args=[Web3.to_checksum_address(to), amount])
        return await self.send_transaction(to=token_address, value=0, data=data)

    async def send_transaction_request(self, request: dict[str, Any]) -> str:
        """Sign and send a prepared request (hex or int fields, as routers return them)."""
        fees: dict[str, int] = {}
        for key in ("maxFeePerGas", "maxPriorityFeePerGas", "gasPrice"):
            if request.get(key) is not None:
                fees[key] = _as_int(request[key])
        gas = request.get("gasLimit") or request.get("gas")
        return await self.send_transaction(
            to=request["to"],
            value=_as_int(request.get("value")),
            data=request.get("data") or b"",
            gas=_as_int(gas) if gas is not None else None,
            fees=fees or None,
        )

    async def ensure_allowance(self, token_address: str, spender: str, amount: int) -> str | None:
        """Approve *spender* for *amount* if the current allowance is lower.

        Returns the approval hash, or ``None`` when no approval was needed.
        """
        contract = self.web3.eth.contract(
            address=Web3.to_checksum_address(token_address), abi=ERC20_ABI
        )
        spender = Web3.to_checksum_address(spender)
        current = await contract.functions.allowance(self.account.address, spender).call()
        if current >= amount:
            return None
        data = contract.encode_abi("approve", args=[spender, amount])
        tx_hash = await self.send_transaction(to=token_address, value=0, data=data)
        await self.wait_for_receipt(tx_hash)
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 180) -> dict[str, Any]:
        """Wait for *tx_hash* to be mined; raise if it reverted."""
        receipt = await self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        if receipt.get("status") == 0:
            raise RuntimeError(f"Transaction failed: {tx_hash} reverted on {self.chain.name}")
        return dict(receipt)


class ChainClientFactory(Protocol):
    """Builds clients for a chain. Construction must not perform network I/O."""

    def read_client(self, chain: ChainDescriptor) -> AsyncWeb3: ...

    def write_client(self, chain: ChainDescriptor, account: LocalAccount) -> SigningClient: ...


class Web3ClientFactory:
    """Default factory: one ``AsyncHTTPProvider`` per client."""

    def read_client(self, chain: ChainDescriptor) -> AsyncWeb3:
        return build_web3(chain.rpc_url, chain.chain_id)

    def write_client(self, chain: ChainDescriptor, account: LocalAccount) -> SigningClient:
        return SigningClient(build_web3(chain.rpc_url, chain.chain_id), account, chain)
