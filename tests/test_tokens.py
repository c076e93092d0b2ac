"""
Tests for ERC20 enumeration over alchemy_getTokenBalances.
"""
import json

import httpx
import pytest

from agent_chain_wallet.wallet.errors import ClassifiedError, ErrorKind
from agent_chain_wallet.wallet.tokens import TokenBalance, TokenEnumerator

OWNER = "0x000000000000000000000000000000000000dEaD"
USDC = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
DAI = "0x50c5725949a6f0c72e6c4a641f24049a917db0cb"
BROKEN = "0x1111111111111111111111111111111111111111"
RPC = "https://base-mainnet.g.alchemy.com/v2/test-key"

METADATA = {
    USDC: ("USD Coin", "USDC", 6),
    DAI: ("Dai Stablecoin", "DAI", 18),
}


class _Call:
    def __init__(self, value=None, error=None):
        self.value = value
        self.error = error

    async def call(self):
        if self.error:
            raise self.error
        return self.value


class _Functions:
    def __init__(self, address):
        self.meta = METADATA.get(address.lower())

    def _call(self, index):
        if self.meta is None:
            return _Call(error=ValueError("execution reverted"))
        return _Call(self.meta[index])

    def name(self):
        return self._call(0)

    def symbol(self):
        return self._call(1)

    def decimals(self):
        return self._call(2)


class _Contract:
    def __init__(self, address):
        self.functions = _Functions(address)


class _Eth:
    def contract(self, address, abi):
        return _Contract(address)


class _Web3:
    def __init__(self):
        self.eth = _Eth()


def _transport(payload=None, status=200, record=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if record is not None:
            record.append(json.loads(request.content))
        return httpx.Response(status, json=payload or {})

    return httpx.MockTransport(handler)


def _balances(*entries):
    return {
        "jsonrpc": "2.0",
        "id": 1,
        "result": {
            "address": OWNER,
            "tokenBalances": [
                {"contractAddress": addr, "tokenBalance": bal, "error": None}
                for addr, bal in entries
            ],
        },
    }


class TestSupports:
    @pytest.mark.parametrize(
        "url,expected",
        [
            (RPC, True),
            ("https://eth-mainnet.alchemy.com/v2/key", True),
            ("https://mainnet.base.org", False),
            ("https://alchemy.com.evil.org/rpc", False),
            ("not a url", False),
        ],
    )
    def test_host_fingerprint(self, url, expected):
        assert TokenEnumerator().supports(url) is expected


class TestListNonZeroTokens:
    """Test TokenEnumerator.list_non_zero_tokens."""

    @pytest.mark.asyncio
    async def test_unsupported_endpoint_returns_empty_without_calls(self):
        requests = []
        enumerator = TokenEnumerator(transport=_transport(record=requests))
        assert await enumerator.list_non_zero_tokens(OWNER, "https://mainnet.base.org") == []
        assert requests == []

    @pytest.mark.asyncio
    async def test_lists_tokens_with_metadata(self):
        requests = []
        payload = _balances(
            (USDC, hex(12_500_000)),
            (DAI, "0x0"),
        )
        enumerator = TokenEnumerator(
            transport=_transport(payload, record=requests),
            web3_factory=lambda url: _Web3(),
        )
        tokens = await enumerator.list_non_zero_tokens(OWNER, RPC)

        assert requests[0]["method"] == "alchemy_getTokenBalances"
        assert requests[0]["params"] == [OWNER, "erc20"]
        assert len(tokens) == 1
        token = tokens[0]
        assert isinstance(token, TokenBalance)
        assert token.symbol == "USDC"
        assert token.decimals == 6
        assert token.balance == "12.5"
        assert token.contract_address == "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"

    @pytest.mark.asyncio
    async def test_bad_token_is_skipped(self):
        payload = _balances(
            (USDC, hex(1_000_000)),
            (BROKEN, hex(5)),
            (DAI, hex(3 * 10**18)),
        )
        enumerator = TokenEnumerator(
            transport=_transport(payload),
            web3_factory=lambda url: _Web3(),
        )
        tokens = await enumerator.list_non_zero_tokens(OWNER, RPC)
        assert [t.symbol for t in tokens] == ["USDC", "DAI"]
        assert tokens[1].balance == "3"

    @pytest.mark.asyncio
    async def test_metadata_client_built_once_per_endpoint(self):
        built = []

        def factory(url):
            built.append(url)
            return _Web3()

        enumerator = TokenEnumerator(
            transport=_transport(_balances((USDC, hex(1)))),
            web3_factory=factory,
        )
        await enumerator.list_non_zero_tokens(OWNER, RPC)
        await enumerator.list_non_zero_tokens(OWNER, RPC)
        assert built == [RPC]

    @pytest.mark.asyncio
    async def test_supplied_client_is_used(self):
        enumerator = TokenEnumerator(
            transport=_transport(_balances((USDC, hex(1)))),
            web3_factory=lambda url: pytest.fail("no client should be built"),
        )
        tokens = await enumerator.list_non_zero_tokens(OWNER, RPC, _Web3())
        assert [t.symbol for t in tokens] == ["USDC"]

    @pytest.mark.asyncio
    async def test_all_zero_balances(self):
        enumerator = TokenEnumerator(
            transport=_transport(_balances((USDC, "0x0"))),
            web3_factory=lambda url: pytest.fail("metadata should not be read"),
        )
        assert await enumerator.list_non_zero_tokens(OWNER, RPC) == []

    @pytest.mark.asyncio
    async def test_http_failure_is_network_error(self):
        enumerator = TokenEnumerator(transport=_transport({"error": "down"}, status=503))
        with pytest.raises(ClassifiedError) as exc_info:
            await enumerator.list_non_zero_tokens(OWNER, RPC)
        assert exc_info.value.kind == ErrorKind.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_rpc_error_is_network_error(self):
        payload = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "method not found"}}
        enumerator = TokenEnumerator(transport=_transport(payload))
        with pytest.raises(ClassifiedError) as exc_info:
            await enumerator.list_non_zero_tokens(OWNER, RPC)
        assert exc_info.value.kind == ErrorKind.NETWORK_ERROR
