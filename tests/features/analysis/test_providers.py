"""
Tests for provider adapters.

OpenAI-compatible and Claude adapters talk to an httpx.MockTransport; the
Gemini adapter gets a mocked google-genai client.
"""
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from app.features.analysis.schemas.analysis import AIProvider, Priority, WorkerCredential
from app.features.analysis.services.errors import (
    EmptyResponseError,
    MalformedResponseError,
    MissingCredentialError,
    MissingModelError,
    ProviderHTTPError,
    ProviderTimeoutError,
    UnsupportedProviderError,
)
from app.features.analysis.services.providers import (
    ChatCompletionAdapter,
    ClaudeAdapter,
    GeminiAdapter,
    build_adapter,
)
from app.features.analysis.services.retry import RetryPolicy
from app.platform.config import settings

URL = "https://example.com/best-tents"

ANALYSIS = {
    "url": URL,
    "monetization_score": 78,
    "justification": "Review content with buyer intent.",
    "priority": "High",
    "suggested_actions": [
        {"title": "Add comparison table", "description": "Top picks", "impact": "High"},
        {"title": "Add retailer links", "description": "Two retailers", "impact": "Medium"},
        {"title": "Add FAQ", "description": "Long-tail", "impact": "Low"},
    ],
}


def chat_completion(content):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "test-model",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


def mock_http_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestChatCompletionAdapter:
    @pytest.mark.asyncio
    async def test_openai_request_and_reply(self, openai_worker):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers.get("authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json=chat_completion(json.dumps(ANALYSIS)))

        async with mock_http_client(handler) as http_client:
            adapter = ChatCompletionAdapter(openai_worker, http_client=http_client)
            result = await adapter.analyze(URL)
            await adapter.aclose()

        assert result.monetization_score == 78
        assert result.priority == Priority.HIGH
        assert captured["url"] == settings.OPENAI_BASE_URL.rstrip("/") + "/chat/completions"
        assert captured["auth"] == "Bearer sk-test"
        assert captured["body"]["model"] == settings.OPENAI_MODEL
        assert captured["body"]["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in captured["body"]["messages"]] == ["system", "user"]
        assert URL in captured["body"]["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_fenced_reply_is_accepted(self, groq_worker):
        fenced = "```json\n" + json.dumps(ANALYSIS) + "\n```"

        async with mock_http_client(lambda request: httpx.Response(200, json=chat_completion(fenced))) as http_client:
            adapter = ChatCompletionAdapter(groq_worker, http_client=http_client)
            result = await adapter.analyze(URL)

        assert result.url == URL
        assert adapter.model == "llama3-8b-8192"

    @pytest.mark.asyncio
    async def test_unauthorized_is_permanent(self, openai_worker):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})

        async with mock_http_client(handler) as http_client:
            adapter = ChatCompletionAdapter(openai_worker, http_client=http_client)
            with pytest.raises(ProviderHTTPError) as exc_info:
                await adapter.analyze(URL)

        assert exc_info.value.status_code == 401
        assert exc_info.value.retryable is False
        assert "Incorrect API key" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable(self, openai_worker):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(429, json={"error": {"message": "Rate limit reached"}})

        async with mock_http_client(handler) as http_client:
            adapter = ChatCompletionAdapter(openai_worker, http_client=http_client)
            with pytest.raises(ProviderHTTPError) as exc_info:
                await adapter.analyze(URL)

        assert exc_info.value.retryable is True
        # SDK-level retries are disabled
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_non_json_reply_is_malformed(self, openai_worker):
        reply = chat_completion("I think this page is great for affiliates!")

        async with mock_http_client(lambda request: httpx.Response(200, json=reply)) as http_client:
            adapter = ChatCompletionAdapter(openai_worker, http_client=http_client)
            with pytest.raises(MalformedResponseError):
                await adapter.analyze(URL)

    @pytest.mark.asyncio
    async def test_html_gateway_page_is_retryable_malformed_reply(self, openai_worker, recording_sleep):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(200, text="<html>gateway page</html>", headers={"content-type": "text/html"})

        async with mock_http_client(handler) as http_client:
            adapter = ChatCompletionAdapter(openai_worker, http_client=http_client)
            policy = RetryPolicy(max_attempts=3, attempt_timeout=5, sleep=recording_sleep, rand=lambda: 0.0)
            report = await policy.run(lambda: adapter.analyze(URL))

        assert not report.ok
        assert report.attempts == 3
        assert len(calls) == 3
        assert isinstance(report.failure.error, MalformedResponseError)
        assert report.failure.retryable is True

    @pytest.mark.asyncio
    async def test_empty_choices_is_malformed(self, openai_worker):
        reply = chat_completion("{}")
        reply["choices"] = []

        async with mock_http_client(lambda request: httpx.Response(200, json=reply)) as http_client:
            adapter = ChatCompletionAdapter(openai_worker, http_client=http_client)
            with pytest.raises(MalformedResponseError):
                await adapter.analyze(URL)

    @pytest.mark.asyncio
    async def test_openrouter_sends_title_header(self):
        worker = WorkerCredential(provider=AIProvider.OPENROUTER, api_key="or-key", model="meta-llama/llama-3-8b")
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["title"] = request.headers.get("x-title")
            return httpx.Response(200, json=chat_completion(json.dumps(ANALYSIS)))

        async with mock_http_client(handler) as http_client:
            await ChatCompletionAdapter(worker, http_client=http_client).analyze(URL)

        assert captured["url"].startswith(settings.OPENROUTER_BASE_URL.rstrip("/"))
        assert captured["title"] == settings.APP_NAME

    def test_groq_without_model_is_rejected(self):
        worker = WorkerCredential(provider=AIProvider.GROQ, api_key="gsk-test")

        with pytest.raises(MissingModelError) as exc_info:
            ChatCompletionAdapter(worker)

        assert exc_info.value.message == "Please enter a model name for groq."

    @pytest.mark.asyncio
    async def test_missing_key_is_terminal(self):
        adapter = ChatCompletionAdapter(WorkerCredential(provider=AIProvider.OPENAI, api_key="  "))

        with pytest.raises(MissingCredentialError) as exc_info:
            await adapter.analyze(URL)

        assert exc_info.value.retryable is False

    def test_claude_credential_is_not_chat_completion(self):
        with pytest.raises(UnsupportedProviderError):
            ChatCompletionAdapter(WorkerCredential(provider=AIProvider.CLAUDE, api_key="k"))


class TestClaudeAdapter:
    @pytest.mark.asyncio
    async def test_messages_request_and_reply(self):
        worker = WorkerCredential(provider=AIProvider.CLAUDE, api_key="sk-ant-test")
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            text = "Here is the JSON:\n```json\n" + json.dumps(ANALYSIS) + "\n```"
            return httpx.Response(200, json={"content": [{"type": "text", "text": text}]})

        async with mock_http_client(handler) as http_client:
            result = await ClaudeAdapter(worker, http_client=http_client).analyze(URL)

        assert result.monetization_score == 78
        assert captured["url"] == settings.CLAUDE_BASE_URL.rstrip("/") + "/messages"
        assert captured["headers"]["x-api-key"] == "sk-ant-test"
        assert captured["headers"]["anthropic-version"] == settings.ANTHROPIC_VERSION
        assert "authorization" not in captured["headers"]
        body = captured["body"]
        assert body["model"] == settings.CLAUDE_MODEL
        assert body["max_tokens"] == settings.CLAUDE_MAX_TOKENS
        assert body["system"]
        assert body["messages"][0]["role"] == "user"
        assert "Respond ONLY with the JSON object" in body["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_missing_content_is_malformed(self):
        worker = WorkerCredential(provider=AIProvider.CLAUDE, api_key="sk-ant-test")

        async with mock_http_client(lambda request: httpx.Response(200, json={"content": []})) as http_client:
            with pytest.raises(MalformedResponseError) as exc_info:
                await ClaudeAdapter(worker, http_client=http_client).analyze(URL)

        assert exc_info.value.message == "Invalid response structure from Claude API"

    @pytest.mark.asyncio
    async def test_overloaded_is_retryable(self):
        worker = WorkerCredential(provider=AIProvider.CLAUDE, api_key="sk-ant-test")

        async with mock_http_client(lambda request: httpx.Response(529, text="overloaded")) as http_client:
            with pytest.raises(ProviderHTTPError) as exc_info:
                await ClaudeAdapter(worker, http_client=http_client).analyze(URL)

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_bad_request_is_permanent(self):
        worker = WorkerCredential(provider=AIProvider.CLAUDE, api_key="sk-ant-test")

        async with mock_http_client(lambda request: httpx.Response(400, text="invalid model")) as http_client:
            with pytest.raises(ProviderHTTPError) as exc_info:
                await ClaudeAdapter(worker, http_client=http_client).analyze(URL)

        assert exc_info.value.retryable is False
        assert "invalid model" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_network_timeout_is_retryable(self):
        worker = WorkerCredential(provider=AIProvider.CLAUDE, api_key="sk-ant-test")

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with mock_http_client(handler) as http_client:
            with pytest.raises(ProviderTimeoutError):
                await ClaudeAdapter(worker, http_client=http_client).analyze(URL)


class TestGeminiAdapter:
    def make_client(self, text=None, side_effect=None):
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(
            return_value=SimpleNamespace(text=text), side_effect=side_effect
        )
        return client

    @pytest.mark.asyncio
    async def test_schema_constrained_request(self):
        client = self.make_client(text=json.dumps(ANALYSIS))
        worker = WorkerCredential(provider=AIProvider.GEMINI)

        result = await GeminiAdapter(worker, client=client).analyze(URL)

        assert result.monetization_score == 78
        kwargs = client.aio.models.generate_content.await_args.kwargs
        assert kwargs["model"] == settings.GEMINI_MODEL
        assert URL in kwargs["contents"]
        config = kwargs["config"]
        assert config.response_mime_type == "application/json"
        assert config.temperature == settings.ANALYSIS_TEMPERATURE
        assert config.response_schema is not None

    @pytest.mark.asyncio
    async def test_empty_text_is_retryable_error(self):
        client = self.make_client(text="")

        with pytest.raises(EmptyResponseError) as exc_info:
            await GeminiAdapter(WorkerCredential(provider=AIProvider.GEMINI), client=client).analyze(URL)

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_transport_timeout_maps_to_timeout_error(self):
        client = self.make_client(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(ProviderTimeoutError):
            await GeminiAdapter(WorkerCredential(provider=AIProvider.GEMINI), client=client).analyze(URL)

    @pytest.mark.asyncio
    async def test_missing_ambient_key(self):
        with patch.object(settings, "GEMINI_API_KEY", ""):
            adapter = GeminiAdapter(WorkerCredential(provider=AIProvider.GEMINI))
            with pytest.raises(MissingCredentialError) as exc_info:
                await adapter.analyze(URL)

        assert "GEMINI_API_KEY" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_aclose_releases_owned_client(self):
        client = self.make_client(text=json.dumps(ANALYSIS))
        client.aio.aclose = AsyncMock()
        adapter = GeminiAdapter(WorkerCredential(provider=AIProvider.GEMINI))
        adapter._client = client
        adapter._owns_client = True

        await adapter.aclose()

        client.aio.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        client = self.make_client(text=json.dumps(ANALYSIS))
        client.aio.aclose = AsyncMock()

        await GeminiAdapter(WorkerCredential(provider=AIProvider.GEMINI), client=client).aclose()

        client.aio.aclose.assert_not_awaited()

    def test_worker_model_overrides_default(self):
        adapter = GeminiAdapter(WorkerCredential(provider=AIProvider.GEMINI, model="gemini-2.0-flash"))

        assert adapter.model == "gemini-2.0-flash"


class TestBuildAdapter:
    @pytest.mark.parametrize(
        "provider,adapter_cls",
        [
            (AIProvider.GEMINI, GeminiAdapter),
            (AIProvider.OPENAI, ChatCompletionAdapter),
            (AIProvider.OPENROUTER, ChatCompletionAdapter),
            (AIProvider.GROQ, ChatCompletionAdapter),
            (AIProvider.CLAUDE, ClaudeAdapter),
        ],
    )
    def test_dispatches_on_provider(self, provider, adapter_cls):
        worker = WorkerCredential(provider=provider, api_key="k", model="some-model")

        assert isinstance(build_adapter(worker), adapter_cls)
