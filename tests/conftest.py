"""
Shared fixtures for agent-chain-wallet tests.

Nothing here touches a live network: clients are built through stub
factories and HTTP goes through ``httpx.MockTransport``.
"""
from __future__ import annotations

import itertools

import pytest

from agent_chain_wallet.wallet.chains import ChainDescriptor
from agent_chain_wallet.wallet.provider import WalletProvider
from agent_chain_wallet.wallet.routing import Route, RouteStep, TokenInfo

TEST_KEY = "0x" + "1" * 64
RECIPIENT = "0x000000000000000000000000000000000000dEaD"


class StubEth:
    """Stands in for ``AsyncWeb3.eth``; counts every network call."""

    def __init__(self, balance: int = 0, fail: bool = False) -> None:
        self.balance = balance
        self.fail = fail
        self.calls = 0

    async def get_balance(self, address):
        self.calls += 1
        if self.fail:
            raise ConnectionError("connection refused")
        return self.balance


class StubWeb3:
    def __init__(self, chain: ChainDescriptor, balance: int = 0, fail: bool = False) -> None:
        self.chain = chain
        self.rpc_url = chain.rpc_url
        self.eth = StubEth(balance, fail)


class FakeSigner:
    """Signing client double that records submissions."""

    _counter = itertools.count(1)

    def __init__(self, chain: ChainDescriptor, account, fail_on=None, receipt_error=None) -> None:
        self.chain = chain
        self.address = account.address
        self.fail_on = fail_on
        self.receipt_error = receipt_error
        self.sent: list[tuple] = []
        self.approvals: list[tuple] = []
        self.receipts: list[str] = []

    def _next_hash(self) -> str:
        return "0x" + format(next(self._counter), "064x")

    async def send_native(self, to, value):
        if self.fail_on is not None:
            raise self.fail_on
        self.sent.append(("native", to, value))
        return self._next_hash()

    async def send_erc20(self, token_address, to, amount):
        if self.fail_on is not None:
            raise self.fail_on
        self.sent.append(("erc20", token_address, to, amount))
        return self._next_hash()

    async def send_transaction_request(self, request):
        if self.fail_on is not None:
            raise self.fail_on
        self.sent.append(("request", request))
        return self._next_hash()

    async def ensure_allowance(self, token_address, spender, amount):
        self.approvals.append((token_address, spender, amount))
        return None

    async def wait_for_receipt(self, tx_hash, timeout=180):
        self.receipts.append(tx_hash)
        if self.receipt_error is not None:
            raise self.receipt_error
        return {"status": 1, "transactionHash": tx_hash}


class StubFactory:
    """``ChainClientFactory`` double.

    Chains named in *failing* get read clients whose calls raise.
    """

    def __init__(self, balances=None, failing=(), signer_error=None, receipt_error=None) -> None:
        self.balances = balances or {}
        self.failing = set(failing)
        self.signer_error = signer_error
        self.receipt_error = receipt_error
        self.read_built: list[str] = []
        self.write_built: list[str] = []
        self.signers: dict[str, FakeSigner] = {}
        self.readers: dict[str, StubWeb3] = {}

    def read_client(self, chain):
        self.read_built.append(chain.name)
        client = StubWeb3(
            chain, self.balances.get(chain.name, 0), fail=chain.name in self.failing
        )
        self.readers[chain.name] = client
        return client

    def write_client(self, chain, account):
        self.write_built.append(chain.name)
        signer = FakeSigner(
            chain, account, fail_on=self.signer_error, receipt_error=self.receipt_error
        )
        self.signers[chain.name] = signer
        return signer

    @property
    def network_calls(self) -> int:
        reads = sum(r.eth.calls for r in self.readers.values())
        writes = sum(len(s.sent) for s in self.signers.values())
        return reads + writes


class FakeRouter:
    """``BridgeRouter`` double returning a fixed route."""

    def __init__(self, steps: int = 2, from_chain_id: int = 11155111, to_chain_id: int = 84532):
        self.steps = steps
        self.from_chain_id = from_chain_id
        self.to_chain_id = to_chain_id
        self.route_queries = []
        self.prepared: list[str] = []
        self.token_lookups: list[tuple[int, str]] = []
        self.status_calls: list[tuple] = []
        self.routes_override = None

    async def resolve_token(self, chain_id, token):
        self.token_lookups.append((chain_id, token))
        return TokenInfo(
            address="0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
            symbol=token.upper(),
            decimals=6,
            chain_id=chain_id,
        )

    async def get_routes(self, query):
        self.route_queries.append(query)
        if self.routes_override is not None:
            return self.routes_override
        steps = [
            RouteStep(
                id=f"step-{i}",
                tool="across",
                from_chain_id=self.from_chain_id,
                to_chain_id=self.to_chain_id if i == self.steps else self.from_chain_id,
                from_token_address=query.from_token,
                from_amount=query.from_amount,
                raw={"id": f"step-{i}"},
            )
            for i in range(1, self.steps + 1)
        ]
        return [
            Route(
                id="route-1",
                from_chain_id=self.from_chain_id,
                to_chain_id=self.to_chain_id,
                from_amount=query.from_amount,
                to_amount=query.from_amount,
                steps=steps,
            )
        ]

    async def prepare_step(self, step):
        self.prepared.append(step.id)
        return {"to": RECIPIENT, "data": "0x", "value": "0x0"}

    async def get_status(self, tx_hash, from_chain_id, to_chain_id, tool=None):
        self.status_calls.append((tx_hash, from_chain_id, to_chain_id, tool))
        return {"status": "DONE", "substatus": "COMPLETED", "receiving": {"txHash": "0xbeef"}}


def descriptor(name: str, chain_id: int, rpc_url: str | None = None, **kwargs) -> ChainDescriptor:
    return ChainDescriptor(
        name=name,
        chain_id=chain_id,
        rpc_url=rpc_url or f"https://{name}.example.org",
        **kwargs,
    )


@pytest.fixture
def chains():
    """Three test chains keyed by name."""
    return {
        "sepolia": descriptor("sepolia", 11155111, is_testnet=True),
        "base-sepolia": descriptor("base-sepolia", 84532, is_testnet=True),
        "ethereum": descriptor("ethereum", 1),
    }


@pytest.fixture
def factory():
    return StubFactory()


@pytest.fixture
def provider(chains, factory):
    return WalletProvider(TEST_KEY, chains, client_factory=factory)


@pytest.fixture
def router():
    return FakeRouter()


@pytest.fixture
def no_sleep(monkeypatch):
    """Make retry back-off instant, recording requested delays."""
    delays: list[float] = []

    async def _sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("agent_chain_wallet.wallet.errors.asyncio.sleep", _sleep)
    return delays
