"""
LLM client abstraction supporting OpenAI and Anthropic.
Every teachback prompt asks for a JSON object, so the client exposes a plain
text completion and a JSON-object completion on top of it.
"""

import json
from typing import Optional, Dict, Any, List
from enum import Enum

from openai import AsyncOpenAI
from anthropic import AsyncAnthropic

from teachback.shared.config import settings
from teachback.shared.exceptions import TeachBackError


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class LLMError(TeachBackError):
    """Raised when the provider call fails or returns unusable output."""
    pass


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse a JSON object from model output, tolerating markdown code fences."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]

    try:
        parsed = json.loads(cleaned.strip())
    except json.JSONDecodeError as e:
        raise LLMError(f"Failed to parse JSON response: {str(e)}\nResponse: {text[:200]}") from e

    if not isinstance(parsed, dict):
        raise LLMError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


class LLMClient:
    """Unified LLM client supporting multiple providers."""

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ):
        self.provider = provider or settings.llm.provider
        self.model = model or settings.llm.default_model
        self.temperature = temperature if temperature is not None else settings.llm.temperature
        self.max_tokens = max_tokens or settings.llm.max_tokens

        if self.provider == LLMProvider.OPENAI:
            api_key = api_key or settings.llm.openai_api_key
            if not api_key:
                raise LLMError("OpenAI API key not configured")
            self.client = AsyncOpenAI(api_key=api_key)
        elif self.provider == LLMProvider.ANTHROPIC:
            api_key = api_key or settings.llm.anthropic_api_key
            if not api_key:
                raise LLMError("Anthropic API key not configured")
            self.client = AsyncAnthropic(api_key=api_key)
        else:
            raise LLMError(f"Unsupported provider: {self.provider}")

    async def get_completion(
        self,
        messages: List[Dict[str, str]],
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False
    ) -> str:
        """
        Get text completion from LLM.

        Args:
            messages: Chat messages ({"role": "user"|"assistant", "content": ...})
            system_prompt: Optional system prompt
            temperature: Override default temperature
            max_tokens: Override default max_tokens
            json_mode: Ask the provider for a JSON object

        Returns:
            Completion text (may be empty)
        """
        temperature = temperature if temperature is not None else self.temperature
        max_tokens = max_tokens or self.max_tokens

        try:
            if self.provider == LLMProvider.OPENAI:
                return await self._openai_completion(
                    messages, system_prompt, temperature, max_tokens, json_mode
                )
            return await self._anthropic_completion(
                messages, system_prompt, temperature, max_tokens, json_mode
            )
        except LLMError:
            raise
        except Exception as e:
            raise LLMError(f"LLM completion failed: {str(e)}") from e

    async def _openai_completion(
        self,
        messages: List[Dict[str, str]],
        system_prompt: Optional[str],
        temperature: float,
        max_tokens: int,
        json_mode: bool
    ) -> str:
        """OpenAI-specific completion."""
        chat = []
        if system_prompt:
            chat.append({"role": "system", "content": system_prompt})
        chat.extend(messages)

        completion_kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": chat,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            completion_kwargs["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**completion_kwargs)
        return response.choices[0].message.content or ""

    async def _anthropic_completion(
        self,
        messages: List[Dict[str, str]],
        system_prompt: Optional[str],
        temperature: float,
        max_tokens: int,
        json_mode: bool
    ) -> str:
        """Anthropic-specific completion."""
        system = system_prompt or ""
        if json_mode:
            system += "\n\nRespond with a single valid JSON object and nothing else."

        completion_kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            # Anthropic requires the conversation to open with a user turn
            "messages": messages or [{"role": "user", "content": "Begin."}],
        }
        if system.strip():
            completion_kwargs["system"] = system.strip()

        response = await self.client.messages.create(**completion_kwargs)
        if not response.content:
            return ""
        return response.content[0].text

    async def get_json_completion(
        self,
        messages: List[Dict[str, str]],
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Get a JSON-object completion.

        Raises:
            LLMError if the provider fails, returns nothing, or returns invalid JSON
        """
        response_text = await self.get_completion(
            messages=messages,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=True
        )
        if not response_text.strip():
            raise LLMError("Empty response from LLM")
        return parse_json_object(response_text)
