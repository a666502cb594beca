"""Tests for the Anthropic transport and request payload building."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from budget_toolkit.gateway.config_manager import build_effective_config
from budget_toolkit.gateway.errors import (
    ConfigurationError,
    ResponseFormatError,
    TransientTransportError,
    TransportRequestError,
)
from budget_toolkit.gateway.transport import (
    ANTHROPIC_VERSION,
    AnthropicTransport,
    build_request_payload,
)
from budget_toolkit.gateway.types import ChatMessage, ChatRole, ClientConfig


def _make_httpx_response(status_code: int, json_data: dict | None = None, text: str = "") -> httpx.Response:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, request=request)
    return httpx.Response(status_code, text=text, request=request)


def _mock_message_response(text="Hello world"):
    return _make_httpx_response(
        200,
        json_data={
            "id": "msg_01",
            "type": "message",
            "role": "assistant",
            "content": [{"type": "text", "text": text}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 10, "output_tokens": 20},
        },
    )


def _patched_client(mock_client_cls, post_result=None, post_error=None):
    mock_client = AsyncMock()
    if post_error is not None:
        mock_client.post.side_effect = post_error
    else:
        mock_client.post.return_value = post_result
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_cls.return_value = mock_client
    return mock_client


PAYLOAD = {"model": "claude-sonnet-4-5", "messages": [{"role": "user", "content": "hi"}], "max_tokens": 10}


# ==========================================================================
# Test: Request payload
# ==========================================================================


class TestBuildRequestPayload:
    """Test the Messages API request body."""

    def test_minimal_payload(self):
        payload = build_request_payload([ChatMessage(ChatRole.USER, "hi")], ClientConfig())
        assert payload == {
            "model": "claude-sonnet-4-5",
            "messages": [{"role": "user", "content": "hi"}],
            "max_tokens": 2000,
            "temperature": 0.2,
        }

    def test_optional_parameters_included_when_set(self):
        config = build_effective_config(
            ClientConfig(),
            {"top_p": 0.9, "top_k": 40, "stop_sequences": ("END",), "metadata": {"user_id": "u-1"}},
        )
        payload = build_request_payload([ChatMessage(ChatRole.USER, "hi")], config)
        assert payload["top_p"] == 0.9
        assert payload["top_k"] == 40
        assert payload["stop_sequences"] == ["END"]
        assert payload["metadata"] == {"user_id": "u-1"}

    def test_zero_valued_options_kept(self):
        config = build_effective_config(ClientConfig(), {"temperature": 0.0, "top_p": 0.0})
        payload = build_request_payload([ChatMessage(ChatRole.USER, "hi")], config)
        assert payload["temperature"] == 0.0
        assert payload["top_p"] == 0.0

    def test_conversation_order_kept(self):
        messages = [
            ChatMessage(ChatRole.USER, "one"),
            ChatMessage(ChatRole.ASSISTANT, "two"),
            ChatMessage(ChatRole.USER, "three"),
        ]
        payload = build_request_payload(messages, ClientConfig())
        assert [m["content"] for m in payload["messages"]] == ["one", "two", "three"]


# ==========================================================================
# Test: Anthropic transport (mocked HTTP)
# ==========================================================================


class TestAnthropicTransport:
    """Test the httpx adapter."""

    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            AnthropicTransport(api_key="")

    def test_from_config(self):
        transport = AnthropicTransport.from_config(
            ClientConfig(api_key="k", base_url="https://custom-api.com/", timeout_ms=5000)
        )
        assert transport.api_url == "https://custom-api.com/v1/messages"
        assert transport.timeout == 5.0

    @pytest.mark.asyncio
    async def test_send_success(self):
        transport = AnthropicTransport(api_key="test-key")

        with patch("budget_toolkit.gateway.transport.httpx.AsyncClient") as mock_client_cls:
            mock_client = _patched_client(mock_client_cls, _mock_message_response())

            body = await transport.send(PAYLOAD)

        assert body["content"] == [{"type": "text", "text": "Hello world"}]
        mock_client_cls.assert_called_once_with(timeout=30.0)
        call = mock_client.post.call_args
        assert call.args[0] == "https://api.anthropic.com/v1/messages"
        assert call.kwargs["json"] == PAYLOAD
        assert call.kwargs["headers"]["x-api-key"] == "test-key"
        assert call.kwargs["headers"]["anthropic-version"] == ANTHROPIC_VERSION

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503, 529])
    async def test_retryable_status(self, status):
        transport = AnthropicTransport(api_key="test-key")
        error_body = {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}

        with patch("budget_toolkit.gateway.transport.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, _make_httpx_response(status, json_data=error_body))

            with pytest.raises(TransientTransportError, match="Overloaded") as exc_info:
                await transport.send(PAYLOAD)

        assert exc_info.value.status_code == status
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_client_error_not_retryable(self):
        transport = AnthropicTransport(api_key="test-key")

        with patch("budget_toolkit.gateway.transport.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, _make_httpx_response(400, text="bad request"))

            with pytest.raises(TransportRequestError, match="400 bad request") as exc_info:
                await transport.send(PAYLOAD)

        assert exc_info.value.status_code == 400
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_timeout(self):
        transport = AnthropicTransport(api_key="test-key", timeout_ms=5000)

        with patch("budget_toolkit.gateway.transport.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, post_error=httpx.TimeoutException("timeout"))

            with pytest.raises(TransientTransportError, match="Timeout after 5.0s"):
                await transport.send(PAYLOAD)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        transport = AnthropicTransport(api_key="test-key")

        with patch("budget_toolkit.gateway.transport.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, post_error=httpx.ConnectError("connection refused"))

            with pytest.raises(TransientTransportError, match="connection refused"):
                await transport.send(PAYLOAD)

    @pytest.mark.asyncio
    async def test_invalid_json_body(self):
        transport = AnthropicTransport(api_key="test-key")

        with patch("budget_toolkit.gateway.transport.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, _make_httpx_response(200, text="<html>oops</html>"))

            with pytest.raises(ResponseFormatError):
                await transport.send(PAYLOAD)
