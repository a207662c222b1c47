"""
Tests for transient I/O retry with exponential backoff.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from market_ledger.errors import RetryExhaustedError, TransientStoreError
from market_ledger.utils.retry import is_transient, retry_async


class TestIsTransient:

    @pytest.mark.parametrize(
        "exc",
        [
            TransientStoreError("down"),
            OperationalError("SELECT 1", {}, Exception("connection reset")),
            ConnectionResetError(),
            TimeoutError(),
        ],
    )
    def test_transient(self, exc) -> None:
        assert is_transient(exc) is True

    @pytest.mark.parametrize(
        "exc",
        [
            ValueError("bad"),
            IntegrityError("INSERT", {}, Exception("duplicate key")),
            KeyError("x"),
        ],
    )
    def test_not_transient(self, exc) -> None:
        assert is_transient(exc) is False


class TestRetryAsync:

    @pytest.mark.asyncio
    async def test_returns_first_success(self) -> None:
        fn = AsyncMock(return_value=42)

        assert await retry_async(fn, operation="op") == 42
        assert fn.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self) -> None:
        fn = AsyncMock(side_effect=[TransientStoreError("blip"), TransientStoreError("blip"), "ok"])

        assert await retry_async(fn, operation="op", max_attempts=3, base_backoff=0) == "ok"
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_exhausted_raises_chained_error(self) -> None:
        last = TransientStoreError("still down")
        fn = AsyncMock(side_effect=[TransientStoreError("down"), last])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_async(fn, operation="snapshot_append", max_attempts=2, base_backoff=0)

        assert exc_info.value.operation == "snapshot_append"
        assert exc_info.value.attempts == 2
        assert exc_info.value.__cause__ is last

    @pytest.mark.asyncio
    async def test_non_transient_propagates_immediately(self) -> None:
        fn = AsyncMock(side_effect=ValueError("bad row"))

        with pytest.raises(ValueError):
            await retry_async(fn, operation="op", max_attempts=5, base_backoff=0)
        assert fn.await_count == 1

    @pytest.mark.asyncio
    async def test_backoff_doubles(self) -> None:
        fn = AsyncMock(side_effect=[TransientStoreError("a"), TransientStoreError("b"), "ok"])

        with patch("market_ledger.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            await retry_async(fn, operation="op", max_attempts=3, base_backoff=0.5)

        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]
