"""Tests for services.llm."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from services.llm import OllamaClient, invoke_with_retry, normalize_ollama_url


class TestNormalizeOllamaUrl:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("http://localhost:11434", "http://localhost:11434"),
            ("http://localhost:11434/", "http://localhost:11434"),
            ("http://localhost:11434/v1", "http://localhost:11434"),
            ("http://localhost:11434/v1/", "http://localhost:11434"),
        ],
    )
    def test_strips_openai_suffix(self, url: str, expected: str) -> None:
        assert normalize_ollama_url(url) == expected


class TestInvokeWithRetry:
    def test_returns_first_success(self) -> None:
        calls = []

        async def call():
            calls.append(1)
            return "ok"

        result = asyncio.run(invoke_with_retry(call, timeout=1, max_retries=3, retry_delay=0, label="t"))

        assert result == "ok"
        assert len(calls) == 1

    def test_retries_connection_errors(self) -> None:
        attempts = []

        async def call():
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection refused")
            return "ok"

        result = asyncio.run(invoke_with_retry(call, timeout=1, max_retries=3, retry_delay=0, label="t"))

        assert result == "ok"
        assert len(attempts) == 3

    def test_timeouts_exhaust_retries(self) -> None:
        attempts = []

        async def call():
            attempts.append(1)
            await asyncio.sleep(1)

        with pytest.raises(TimeoutError):
            asyncio.run(invoke_with_retry(call, timeout=0.01, max_retries=2, retry_delay=0, label="t"))
        assert len(attempts) == 2

    def test_other_errors_not_retried(self) -> None:
        attempts = []

        async def call():
            attempts.append(1)
            raise ValueError("bad model name")

        with pytest.raises(ValueError):
            asyncio.run(invoke_with_retry(call, timeout=1, max_retries=3, retry_delay=0, label="t"))
        assert len(attempts) == 1


class TestHealthCheck:
    def _check(self, mock: AsyncMock) -> bool:
        client = OllamaClient(base_url="http://ollama:11434/v1", model="llama3.1:8b")
        with patch.object(httpx.AsyncClient, "get", mock):
            return asyncio.run(client.health_check())

    def test_reachable(self) -> None:
        mock = AsyncMock(return_value=httpx.Response(200, json={"models": []}))
        assert self._check(mock) is True
        mock.assert_awaited_once_with("http://ollama:11434/api/tags")

    def test_error_status(self) -> None:
        assert self._check(AsyncMock(return_value=httpx.Response(500, text="oops"))) is False

    def test_connection_refused(self) -> None:
        assert self._check(AsyncMock(side_effect=httpx.ConnectError("refused"))) is False
