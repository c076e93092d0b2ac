"""
Tests for error classification and the bounded retry wrapper.
"""
import asyncio

import httpx
import pytest

from agent_chain_wallet.wallet.errors import (
    RECOVERABLE_KINDS,
    SUGGESTIONS,
    ClassifiedError,
    ErrorHandler,
    ErrorKind,
)


class TestTaxonomy:
    def test_every_kind_has_a_suggestion(self):
        for kind in ErrorKind:
            assert SUGGESTIONS[kind], kind

    def test_recoverable_kinds(self):
        assert RECOVERABLE_KINDS == {
            ErrorKind.MATCHING_FAILED,
            ErrorKind.GAS_ESTIMATION_ERROR,
            ErrorKind.NETWORK_ERROR,
        }

    def test_create(self):
        error = ErrorHandler.create(ErrorKind.INVALID_AMOUNT, "bad amount", {"amount": "0"})
        assert error.kind == ErrorKind.INVALID_AMOUNT
        assert error.message == "bad amount"
        assert error.details == {"amount": "0"}
        assert error.suggestions == SUGGESTIONS[ErrorKind.INVALID_AMOUNT]
        assert error.recoverable is False


class TestClassify:
    @pytest.mark.parametrize(
        "message,kind",
        [
            ("insufficient funds for gas * price + value", ErrorKind.INSUFFICIENT_FUNDS),
            ("P2P matching failed for pool", ErrorKind.MATCHING_FAILED),
            ("Insufficient liquidity in reserve", ErrorKind.INSUFFICIENT_LIQUIDITY),
            ("gas required exceeds allowance (30000000)", ErrorKind.GAS_ESTIMATION_ERROR),
            ("No route found for this pair", ErrorKind.NO_ROUTE_AVAILABLE),
            ("execution reverted: ERC20: transfer amount exceeds allowance", ErrorKind.TRANSACTION_FAILED),
            ("nonce too low", ErrorKind.TRANSACTION_FAILED),
            ("Invalid amount supplied", ErrorKind.INVALID_AMOUNT),
            ("invalid address format", ErrorKind.INVALID_RECIPIENT),
            ("request timed out", ErrorKind.NETWORK_ERROR),
            ("something odd happened", ErrorKind.UNKNOWN_ERROR),
        ],
    )
    def test_message_patterns(self, message, kind):
        error = ErrorHandler.classify(RuntimeError(message))
        assert error.kind == kind
        assert message in error.message
        assert error.details["original_error"] == message
        assert error.details["error_type"] == "RuntimeError"

    def test_transport_errors_are_network_errors(self):
        error = ErrorHandler.classify(httpx.ConnectError("boom"))
        assert error.kind == ErrorKind.NETWORK_ERROR
        assert error.recoverable

    def test_timeout_is_network_error(self):
        assert ErrorHandler.classify(asyncio.TimeoutError()).kind == ErrorKind.NETWORK_ERROR

    def test_classified_passes_through(self):
        original = ErrorHandler.create(ErrorKind.SAME_CHAIN_BRIDGE, "same")
        assert ErrorHandler.classify(original) is original

    def test_to_response(self):
        error = ErrorHandler.classify(ConnectionError("connection refused"))
        response = ErrorHandler.to_response(error)
        assert response["kind"] == "network_error"
        assert response["recoverable"] is True
        assert response["suggestions"]
        assert ErrorHandler.get_suggestion(error) == response["suggestions"][0]


class TestWithRetry:
    """Test ErrorHandler.with_retry."""

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, no_sleep):
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise RuntimeError("flaky")
            return "ok"

        assert await ErrorHandler.with_retry(op, 3, 0.1) == "ok"
        assert calls == 3
        assert no_sleep == [pytest.approx(0.1), pytest.approx(0.2)]

    @pytest.mark.asyncio
    async def test_always_fails(self, no_sleep):
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            raise RuntimeError("still broken")

        with pytest.raises(ClassifiedError) as exc_info:
            await ErrorHandler.with_retry(op, 3, 0.1)
        assert calls == 3
        assert exc_info.value.kind == ErrorKind.UNKNOWN_ERROR
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        # no sleep after the final attempt
        assert len(no_sleep) == 2

    @pytest.mark.asyncio
    async def test_real_delay(self):
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("connection refused")
            return calls

        assert await ErrorHandler.with_retry(op, 3, 0.01) == 2

    @pytest.mark.asyncio
    async def test_validation_error_is_not_retried(self, no_sleep):
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            raise ErrorHandler.create(ErrorKind.INVALID_RECIPIENT, "bad recipient")

        with pytest.raises(ClassifiedError) as exc_info:
            await ErrorHandler.with_retry(op, 3, 0.1)
        assert calls == 1
        assert exc_info.value.kind == ErrorKind.INVALID_RECIPIENT

    @pytest.mark.asyncio
    async def test_retry_if_stops_on_terminal_kind(self, no_sleep):
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            raise RuntimeError("insufficient funds for transfer")

        with pytest.raises(ClassifiedError) as exc_info:
            await ErrorHandler.with_retry(op, 3, 0.1, retry_if=ErrorHandler.is_recoverable)
        assert calls == 1
        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_FUNDS

    @pytest.mark.asyncio
    async def test_retry_if_keeps_retrying_recoverable(self, no_sleep):
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            raise ConnectionError("connection refused")

        with pytest.raises(ClassifiedError) as exc_info:
            await ErrorHandler.with_retry(op, 3, 0.1, retry_if=ErrorHandler.is_recoverable)
        assert calls == 3
        assert exc_info.value.kind == ErrorKind.NETWORK_ERROR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("retry_if,expected", [(None, 1), (ErrorHandler.is_recoverable, 3)])
    async def test_each_failure_classified_once(self, no_sleep, caplog, retry_if, expected):
        async def op():
            raise ConnectionError("connection refused")

        with caplog.at_level("ERROR", logger="agent_chain_wallet.wallet.errors"):
            with pytest.raises(ClassifiedError) as exc_info:
                await ErrorHandler.with_retry(op, 3, 0.1, retry_if=retry_if)
        errors = [r for r in caplog.records if r.levelname == "ERROR"]
        assert len(errors) == expected
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_single_attempt(self, no_sleep):
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            raise RuntimeError("nonce too low")

        with pytest.raises(ClassifiedError) as exc_info:
            await ErrorHandler.with_retry(op, max_attempts=1)
        assert calls == 1
        assert no_sleep == []
        assert exc_info.value.kind == ErrorKind.TRANSACTION_FAILED

    @pytest.mark.asyncio
    async def test_max_attempts_must_be_positive(self):
        async def op():
            return 1

        with pytest.raises(ValueError):
            await ErrorHandler.with_retry(op, max_attempts=0)
