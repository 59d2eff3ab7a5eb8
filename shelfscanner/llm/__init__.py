"""
LLM Module for Shelf Scanner

Provider-agnostic model access used by detection and recommendation.
"""

from shelfscanner.llm.clients import (
    LLMProvider,
    ImageInput,
    GeneratedResponse,
    BaseLLMClient,
    GoogleClient,
    AnthropicClient,
    OpenAIClient,
    MockLLMClient,
    create_llm_client,
    generate_with_retry,
    is_transient_error,
)
from shelfscanner.llm.prompts import PromptTemplates
from shelfscanner.llm.parsing import extract_json_object, clamp_unit

__all__ = [
    "LLMProvider",
    "ImageInput",
    "GeneratedResponse",
    "BaseLLMClient",
    "GoogleClient",
    "AnthropicClient",
    "OpenAIClient",
    "MockLLMClient",
    "create_llm_client",
    "generate_with_retry",
    "is_transient_error",
    "PromptTemplates",
    "extract_json_object",
    "clamp_unit",
]
