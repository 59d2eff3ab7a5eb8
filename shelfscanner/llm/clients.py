"""
LLM Clients

Provider-agnostic async clients for text and image+text generation:
- Google Gemini (default, handles shelf photos well and is cheap)
- Anthropic Claude
- OpenAI GPT
- Mock client for offline development and tests

Provider SDKs are imported lazily so only the configured one needs to be
installed.
"""

import asyncio
import base64
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    GOOGLE = "google"
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    MOCK = "mock"


DEFAULT_MODELS = {
    LLMProvider.GOOGLE: "gemini-1.5-flash",
    LLMProvider.ANTHROPIC: "claude-sonnet-4-20250514",
    LLMProvider.OPENAI: "gpt-4o-mini",
}


@dataclass
class ImageInput:
    """Raw image bytes passed alongside a prompt."""

    data: bytes
    mime_type: str = "image/jpeg"

    @property
    def base64_data(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass
class GeneratedResponse:
    """Complete response from a provider."""

    content: str
    model: str = ""
    provider: LLMProvider = LLMProvider.GOOGLE
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    generation_time_ms: float = 0.0


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    provider: LLMProvider

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        image: Optional[ImageInput] = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> GeneratedResponse:
        """Generate a complete response, optionally grounded on an image."""
        pass


class GoogleClient(BaseLLMClient):
    """
    Google Gemini client.

    Gemini takes the system prompt most reliably when it is folded into the
    request, so it is prepended to the user prompt.
    """

    provider = LLMProvider.GOOGLE

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODELS[LLMProvider.GOOGLE],
        default_max_tokens: int = 2048,
    ):
        self.api_key = api_key
        self.model = model
        self.default_max_tokens = default_max_tokens
        self._model = None

    def _get_model(self):
        """Lazy initialization of Google model."""
        if self._model is None:
            try:
                import google.generativeai as genai
            except ImportError:
                raise ImportError(
                    "google-generativeai package required. Install with: pip install google-generativeai"
                )
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model)
        return self._model

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        image: Optional[ImageInput] = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> GeneratedResponse:
        """Generate complete response using Gemini."""
        start_time = time.time()
        model = self._get_model()

        parts: list = [f"{system_prompt}\n\n{user_prompt}" if system_prompt else user_prompt]
        if image is not None:
            parts.append({"mime_type": image.mime_type, "data": image.data})

        try:
            response = await model.generate_content_async(
                parts,
                generation_config={
                    "max_output_tokens": max_tokens or self.default_max_tokens,
                    "temperature": temperature,
                },
            )
            content = response.text
        except Exception as e:
            logger.error(f"Google generation failed: {e}")
            raise

        return GeneratedResponse(
            content=content,
            model=self.model,
            provider=self.provider,
            generation_time_ms=(time.time() - start_time) * 1000,
        )


class AnthropicClient(BaseLLMClient):
    """Anthropic Claude client."""

    provider = LLMProvider.ANTHROPIC

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODELS[LLMProvider.ANTHROPIC],
        default_max_tokens: int = 2048,
    ):
        self.api_key = api_key
        self.model = model
        self.default_max_tokens = default_max_tokens
        self._client = None

    def _get_client(self):
        """Lazy initialization of Anthropic client."""
        if self._client is None:
            try:
                import anthropic
            except ImportError:
                raise ImportError(
                    "anthropic package required. Install with: pip install anthropic"
                )
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        image: Optional[ImageInput] = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> GeneratedResponse:
        """Generate complete response using Claude."""
        start_time = time.time()
        client = self._get_client()

        content: list[dict] = []
        if image is not None:
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": image.base64_data,
                },
            })
        content.append({"type": "text", "text": user_prompt})

        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=max_tokens or self.default_max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": content}],
            )
        except Exception as e:
            logger.error(f"Anthropic generation failed: {e}")
            raise

        return GeneratedResponse(
            content=response.content[0].text,
            model=self.model,
            provider=self.provider,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            generation_time_ms=(time.time() - start_time) * 1000,
        )


class OpenAIClient(BaseLLMClient):
    """OpenAI GPT client."""

    provider = LLMProvider.OPENAI

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODELS[LLMProvider.OPENAI],
        default_max_tokens: int = 2048,
    ):
        self.api_key = api_key
        self.model = model
        self.default_max_tokens = default_max_tokens
        self._client = None

    def _get_client(self):
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            try:
                import openai
            except ImportError:
                raise ImportError(
                    "openai package required. Install with: pip install openai"
                )
            self._client = openai.AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        image: Optional[ImageInput] = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> GeneratedResponse:
        """Generate complete response using GPT."""
        start_time = time.time()
        client = self._get_client()

        if image is not None:
            user_content = [
                {"type": "text", "text": user_prompt},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{image.mime_type};base64,{image.base64_data}"},
                },
            ]
        else:
            user_content = user_prompt

        try:
            response = await client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens or self.default_max_tokens,
                temperature=temperature,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
            )
        except Exception as e:
            logger.error(f"OpenAI generation failed: {e}")
            raise

        return GeneratedResponse(
            content=response.choices[0].message.content or "",
            model=self.model,
            provider=self.provider,
            prompt_tokens=response.usage.prompt_tokens,
            completion_tokens=response.usage.completion_tokens,
            total_tokens=response.usage.total_tokens,
            generation_time_ms=(time.time() - start_time) * 1000,
        )


class MockLLMClient(BaseLLMClient):
    """
    Mock client for development without API keys.

    Returns queued responses in order, then ``default_content`` forever.
    Every call is recorded in ``calls``.
    """

    provider = LLMProvider.MOCK

    def __init__(
        self,
        responses: Optional[list[str]] = None,
        default_content: str = '{"books": [], "recommendations": []}',
    ):
        self.responses = list(responses or [])
        self.default_content = default_content
        self.calls: list[dict] = []

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        image: Optional[ImageInput] = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> GeneratedResponse:
        """Generate a mock response."""
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "has_image": image is not None,
        })
        content = self.responses.pop(0) if self.responses else self.default_content
        return GeneratedResponse(
            content=content,
            model="mock-v1",
            provider=self.provider,
            generation_time_ms=1.0,
        )


# =============================================================================
# Retry
# =============================================================================

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}
TRANSIENT_MARKERS = ("429", "503", "overloaded", "resource exhausted", "unavailable", "rate limit")


def is_transient_error(error: BaseException) -> bool:
    """
    True for failures worth retrying: throttling, overload and timeouts.

    Auth errors, bad requests and parse errors are permanent.
    """
    if isinstance(error, asyncio.TimeoutError):
        return True

    for attr in ("status_code", "code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and value in TRANSIENT_STATUS_CODES:
            return True

    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


async def generate_with_retry(
    client: BaseLLMClient,
    system_prompt: str,
    user_prompt: str,
    image: Optional[ImageInput] = None,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    **kwargs,
) -> GeneratedResponse:
    """
    Call ``client.generate`` retrying transient failures with exponential backoff.

    Permanent failures, and the last transient one, are re-raised unchanged.
    """
    max_attempts = max(1, max_attempts)
    last_error: Optional[Exception] = None

    for attempt in range(max_attempts):
        try:
            return await client.generate(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                image=image,
                **kwargs,
            )
        except Exception as e:
            if not is_transient_error(e):
                raise
            last_error = e

            if attempt + 1 < max_attempts:
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    f"LLM attempt {attempt + 1}/{max_attempts} failed ({e}), retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

    raise last_error


def create_llm_client(
    provider: str,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
) -> BaseLLMClient:
    """
    Build the client for ``provider``.

    Falls back to MockLLMClient when the provider is ``mock`` or no API key is
    configured for it.
    """
    try:
        provider_enum = LLMProvider(provider)
    except ValueError:
        raise ValueError(f"Unsupported LLM provider: {provider}")

    if provider_enum == LLMProvider.MOCK:
        return MockLLMClient()

    if not api_key:
        logger.warning(f"No API key found for provider {provider_enum.value}. Using MockLLMClient.")
        return MockLLMClient()

    model = model or DEFAULT_MODELS[provider_enum]
    if provider_enum == LLMProvider.GOOGLE:
        return GoogleClient(api_key=api_key, model=model)
    if provider_enum == LLMProvider.ANTHROPIC:
        return AnthropicClient(api_key=api_key, model=model)
    return OpenAIClient(api_key=api_key, model=model)
