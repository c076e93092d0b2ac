"""
Tests for the LI.FI router against a mocked HTTP transport.
"""
import json

import httpx
import pytest

from agent_chain_wallet.wallet.errors import ClassifiedError, ErrorKind
from agent_chain_wallet.wallet.routing import (
    NATIVE_TOKEN_ADDRESS,
    LiFiRouter,
    Route,
    RouteQuery,
    RouteStep,
    is_native_token,
)

WALLET = "0x19E7E376E7C213B7E7e7e46cc70A5dD086DAff2A"

ROUTE = {
    "id": "route-abc",
    "fromChainId": 1,
    "toChainId": 8453,
    "fromAmount": "100000000000000000",
    "toAmount": "99000000000000000",
    "steps": [
        {
            "id": "step-1",
            "type": "lifi",
            "tool": "across",
            "action": {
                "fromChainId": 1,
                "toChainId": 8453,
                "fromToken": {"address": NATIVE_TOKEN_ADDRESS, "decimals": 18, "symbol": "ETH"},
                "fromAmount": "100000000000000000",
            },
            "estimate": {"approvalAddress": "0x1231DEB6f5749EF6cE6943a275A1D3E7486F4EaE"},
        }
    ],
}


class Recorder:
    def __init__(self, responses):
        self.responses = responses
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses[request.url.path]
        return httpx.Response(status, json=body)


def _router(responses, **kwargs):
    recorder = Recorder(responses)
    router = LiFiRouter(transport=httpx.MockTransport(recorder), **kwargs)
    return router, recorder


def _query():
    return RouteQuery(
        from_chain_id=1,
        to_chain_id=8453,
        from_token=NATIVE_TOKEN_ADDRESS,
        to_token=NATIVE_TOKEN_ADDRESS,
        from_amount=10**17,
        from_address=WALLET,
        to_address=WALLET,
    )


class TestParsing:
    def test_route_from_api(self):
        route = Route.from_api(ROUTE)
        assert route.id == "route-abc"
        assert route.from_amount == 10**17
        assert route.to_amount == 99 * 10**15
        assert len(route.steps) == 1
        step = route.steps[0]
        assert isinstance(step, RouteStep)
        assert step.tool == "across"
        assert step.from_chain_id == 1
        assert step.to_chain_id == 8453
        assert step.from_amount == 10**17
        assert step.approval_address == "0x1231DEB6f5749EF6cE6943a275A1D3E7486F4EaE"
        assert step.raw["id"] == "step-1"

    @pytest.mark.parametrize(
        "address,expected",
        [
            (None, True),
            (NATIVE_TOKEN_ADDRESS, True),
            ("0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE", True),
            ("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", False),
        ],
    )
    def test_is_native_token(self, address, expected):
        assert is_native_token(address) is expected


class TestLiFiRouter:
    @pytest.mark.asyncio
    async def test_get_routes_payload(self):
        router, recorder = _router(
            {"/v1/advanced/routes": (200, {"routes": [ROUTE]})},
            api_key="secret",
            slippage=0.01,
        )
        routes = await router.get_routes(_query())
        await router.aclose()

        assert [r.id for r in routes] == ["route-abc"]
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.headers["x-lifi-api-key"] == "secret"
        body = json.loads(request.content)
        assert body["fromChainId"] == 1
        assert body["toChainId"] == 8453
        assert body["fromAmount"] == str(10**17)
        assert body["fromTokenAddress"] == NATIVE_TOKEN_ADDRESS
        assert body["toAddress"] == WALLET
        assert body["options"]["order"] == "RECOMMENDED"
        assert body["options"]["slippage"] == 0.01

    @pytest.mark.asyncio
    async def test_no_api_key_header_when_unset(self):
        router, recorder = _router({"/v1/advanced/routes": (200, {"routes": []})})
        assert await router.get_routes(_query()) == []
        assert "x-lifi-api-key" not in recorder.requests[0].headers

    @pytest.mark.asyncio
    async def test_routes_without_steps_are_dropped(self):
        empty = dict(ROUTE, id="empty", steps=[])
        router, _ = _router({"/v1/advanced/routes": (200, {"routes": [empty, ROUTE]})})
        assert [r.id for r in await router.get_routes(_query())] == ["route-abc"]

    @pytest.mark.asyncio
    async def test_prepare_step(self):
        tx_request = {"to": WALLET, "data": "0xabcdef", "value": "0x16345785d8a0000", "gasLimit": "0x5208"}
        router, recorder = _router(
            {"/v1/advanced/stepTransaction": (200, {"transactionRequest": tx_request})}
        )
        step = Route.from_api(ROUTE).steps[0]
        assert await router.prepare_step(step) == tx_request
        assert json.loads(recorder.requests[0].content)["id"] == "step-1"

    @pytest.mark.asyncio
    async def test_prepare_step_without_request(self):
        router, _ = _router({"/v1/advanced/stepTransaction": (200, {})})
        with pytest.raises(RuntimeError):
            await router.prepare_step(Route.from_api(ROUTE).steps[0])

    @pytest.mark.asyncio
    async def test_resolve_token(self):
        token = {
            "address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
            "symbol": "USDC",
            "decimals": 6,
            "chainId": 8453,
            "name": "USD Coin",
        }
        router, recorder = _router({"/v1/token": (200, token)})
        info = await router.resolve_token(8453, "usdc")
        assert info.address == token["address"]
        assert info.decimals == 6
        assert not info.is_native
        params = recorder.requests[0].url.params
        assert params["chain"] == "8453"
        assert params["token"] == "usdc"

    @pytest.mark.asyncio
    async def test_unknown_token(self):
        router, _ = _router({"/v1/token": (404, {"message": "Token not found"})})
        with pytest.raises(ClassifiedError) as exc_info:
            await router.resolve_token(8453, "NOPE")
        assert exc_info.value.kind == ErrorKind.UNSUPPORTED_TOKEN

    @pytest.mark.asyncio
    async def test_get_status(self):
        router, recorder = _router(
            {"/v1/status": (200, {"status": "PENDING", "substatus": "WAIT_DESTINATION_TRANSACTION"})}
        )
        status = await router.get_status("0xabc", 1, 8453, "across")
        assert status["status"] == "PENDING"
        params = recorder.requests[0].url.params
        assert params["txHash"] == "0xabc"
        assert params["fromChain"] == "1"
        assert params["toChain"] == "8453"
        assert params["bridge"] == "across"

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        router, _ = _router({"/v1/advanced/routes": (500, {"message": "boom"})})
        with pytest.raises(httpx.HTTPStatusError):
            await router.get_routes(_query())
