import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from openai import (
    APIConnectionError,
    APIResponseValidationError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)
from openai.types.chat import ChatCompletion

from app.features.analysis.schemas.analysis import AIProvider, AnalysisResultData, WorkerCredential
from app.features.analysis.services.errors import (
    EmptyResponseError,
    MalformedResponseError,
    MissingCredentialError,
    MissingModelError,
    ProviderHTTPError,
    ProviderNetworkError,
    ProviderTimeoutError,
    UnsupportedProviderError,
)
from app.features.analysis.services.normalizer import ProviderFamily, ProviderReply, normalize_reply
from app.features.analysis.services.prompts import (
    GEMINI_RESPONSE_SCHEMA,
    SYSTEM_INSTRUCTION,
    build_user_prompt,
)
from app.platform.config import settings

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """
    Turns one (url, credential) pair into an AnalysisResultData.

    Subclasses only know their provider's wire format: `_request` returns the
    assistant text wrapped in a ProviderReply and `analyze` pushes it through
    the shared normalizer.
    """

    family: ProviderFamily

    def __init__(self, credential: WorkerCredential, timeout: Optional[float] = None):
        self.credential = credential
        self.provider = credential.provider
        self.timeout = timeout if timeout is not None else settings.ANALYSIS_REQUEST_TIMEOUT

    async def analyze(self, url: str) -> AnalysisResultData:
        reply = await self._request(url)
        return normalize_reply(reply, url)

    @abstractmethod
    async def _request(self, url: str) -> ProviderReply:
        ...

    async def aclose(self) -> None:
        """Release pooled connections held by the adapter."""

    def _require_api_key(self) -> str:
        key = self.credential.secret()
        if not key:
            raise MissingCredentialError(f"Please enter an API key for {self.provider.value}.")
        return key

    def _reply(self, text: Optional[str]) -> ProviderReply:
        if not text:
            raise EmptyResponseError(f"Received an empty response from the {self.provider.value} model.")
        return ProviderReply(family=self.family, provider=self.provider.value, text=text)


class GeminiAdapter(ProviderAdapter):
    """Schema-constrained generation through the google-genai SDK."""

    family = ProviderFamily.SCHEMA_CONSTRAINED

    def __init__(
        self,
        credential: WorkerCredential,
        timeout: Optional[float] = None,
        client: Optional[genai.Client] = None,
    ):
        super().__init__(credential, timeout)
        self.model = credential.model or settings.GEMINI_MODEL
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            # Per-worker key wins; otherwise the ambient credential
            api_key = self.credential.secret() or settings.GEMINI_API_KEY
            if not api_key:
                raise MissingCredentialError("GEMINI_API_KEY environment variable not set for Gemini.")
            self._client = genai.Client(
                api_key=api_key,
                http_options=genai_types.HttpOptions(timeout=int(self.timeout * 1000)),
            )
        return self._client

    async def _request(self, url: str) -> ProviderReply:
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=build_user_prompt(url),
                config=genai_types.GenerateContentConfig(
                    system_instruction=SYSTEM_INSTRUCTION,
                    response_mime_type="application/json",
                    response_schema=GEMINI_RESPONSE_SCHEMA,
                    temperature=settings.ANALYSIS_TEMPERATURE,
                ),
            )
        except genai_errors.APIError as e:
            raise ProviderHTTPError(self.provider.value, e.code, e.message) from e
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Request to gemini timed out after {self.timeout:g} seconds") from e
        except httpx.TransportError as e:
            raise ProviderNetworkError(f"Network error talking to gemini: {e}") from e
        return self._reply(response.text)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aio.aclose()
            self._client = None


class ChatCompletionAdapter(ProviderAdapter):
    """OpenAI-compatible chat completions with bearer auth (openai, openrouter, groq)."""

    family = ProviderFamily.CHAT_COMPLETION

    BASE_URLS = {
        AIProvider.OPENAI: lambda: settings.OPENAI_BASE_URL,
        AIProvider.OPENROUTER: lambda: settings.OPENROUTER_BASE_URL,
        AIProvider.GROQ: lambda: settings.GROQ_BASE_URL,
    }

    def __init__(
        self,
        credential: WorkerCredential,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(credential, timeout)
        if self.provider not in self.BASE_URLS:
            raise UnsupportedProviderError(f"Unsupported provider: {self.provider.value}")
        self.base_url = self.BASE_URLS[self.provider]()
        self.model = self._resolve_model()
        self._http_client = http_client
        self._client: Optional[AsyncOpenAI] = None

    def _resolve_model(self) -> str:
        if self.credential.model:
            return self.credential.model
        if self.provider == AIProvider.OPENAI:
            return settings.OPENAI_MODEL
        raise MissingModelError(f"Please enter a model name for {self.provider.value}.")

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            default_headers = None
            if self.provider == AIProvider.OPENROUTER:
                default_headers = {"X-Title": settings.APP_NAME}
            self._client = AsyncOpenAI(
                api_key=self._require_api_key(),
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,  # retries belong to RetryPolicy
                default_headers=default_headers,
                http_client=self._http_client,
            )
        return self._client

    async def _request(self, url: str) -> ProviderReply:
        client = self._get_client()
        try:
            completion = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_INSTRUCTION},
                    {"role": "user", "content": build_user_prompt(url)},
                ],
                response_format={"type": "json_object"},
            )
        except APIStatusError as e:
            raise ProviderHTTPError(self.provider.value, e.status_code, _error_body(e.response)) from e
        except APITimeoutError as e:
            raise ProviderTimeoutError(
                f"Request to {self.provider.value} timed out after {self.timeout:g} seconds"
            ) from e
        except APIConnectionError as e:
            raise ProviderNetworkError(f"Network error talking to {self.provider.value}: {e}") from e
        except APIResponseValidationError as e:
            raise MalformedResponseError(f"Invalid response structure from {self.provider.value}: {e}") from e

        # Non-JSON 200 bodies (gateway or proxy pages) come back from the SDK as plain text
        if not isinstance(completion, ChatCompletion):
            raise MalformedResponseError(
                f"API returned a non-JSON response body from {self.provider.value}: {str(completion)[:200]!r}"
            )
        if not completion.choices or completion.choices[0].message is None:
            raise MalformedResponseError("Invalid response structure from API")
        return self._reply(completion.choices[0].message.content)

    async def aclose(self) -> None:
        if self._client is not None and self._http_client is None:
            await self._client.close()
        self._client = None


class ClaudeAdapter(ProviderAdapter):
    """Anthropic messages API: key in x-api-key, version header, top-level system prompt."""

    family = ProviderFamily.MESSAGES

    def __init__(
        self,
        credential: WorkerCredential,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(credential, timeout)
        self.model = credential.model or settings.CLAUDE_MODEL
        self.endpoint = f"{settings.CLAUDE_BASE_URL.rstrip('/')}/messages"
        self._http_client = http_client
        self._owns_client = http_client is None

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._require_api_key(),
            "anthropic-version": settings.ANTHROPIC_VERSION,
        }

    def _body(self, url: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": settings.CLAUDE_MAX_TOKENS,
            "system": SYSTEM_INSTRUCTION,
            "messages": [{"role": "user", "content": build_user_prompt(url, json_only=True)}],
        }

    async def _request(self, url: str) -> ProviderReply:
        headers = self._headers()
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await self._http_client.post(self.endpoint, headers=headers, json=self._body(url))
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Request to claude timed out after {self.timeout:g} seconds") from e
        except httpx.TransportError as e:
            raise ProviderNetworkError(f"Network error talking to claude: {e}") from e

        if response.status_code >= 400:
            raise ProviderHTTPError(self.provider.value, response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"API returned invalid JSON envelope: {e}") from e

        content = data.get("content") if isinstance(data, dict) else None
        if not content or not isinstance(content[0], dict) or "text" not in content[0]:
            raise MalformedResponseError("Invalid response structure from Claude API")
        return self._reply(content[0]["text"])

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


def _error_body(response: Optional[httpx.Response]) -> str:
    if response is None:
        return ""
    try:
        return response.text
    except httpx.ResponseNotRead:
        return ""


ADAPTERS = {
    AIProvider.GEMINI: GeminiAdapter,
    AIProvider.OPENAI: ChatCompletionAdapter,
    AIProvider.OPENROUTER: ChatCompletionAdapter,
    AIProvider.GROQ: ChatCompletionAdapter,
    AIProvider.CLAUDE: ClaudeAdapter,
}


def build_adapter(credential: WorkerCredential, **kwargs) -> ProviderAdapter:
    adapter_cls = ADAPTERS.get(credential.provider)
    if adapter_cls is None:
        raise UnsupportedProviderError(f"Unsupported provider: {credential.provider}")
    return adapter_cls(credential, **kwargs)
