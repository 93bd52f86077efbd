"""
Groq Email Content Generator

Produces the subject/body JSON for follow-up emails. JSON mode is on by
default so the model returns a bare object; the executor still tolerates
prose around it when JSON mode is switched off.
"""
import logging
import os
from typing import Any, Dict, List, Optional

from groq import AsyncGroq

from outreach.domain.interfaces.llm_provider import LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.3-70b-versatile"


class GroqLLMProvider(LLMProvider):
    """
    One-shot Groq completions for outreach copy

    Models that work well for short emails:
    - llama-3.3-70b-versatile (default)
    - llama-3.1-8b-instant for cheaper test campaigns
    """

    def __init__(self):
        self._client: Optional[AsyncGroq] = None
        self._model: str = DEFAULT_MODEL
        self._temperature: float = 0.7
        self._max_tokens: int = 1024
        self._json_mode: bool = True

    async def initialize(self, config: dict) -> None:
        api_key = config.get("api_key") or os.getenv("GROQ_API_KEY")
        if not api_key:
            raise ValueError("Groq API key not found in config or environment")

        self._model = config.get("model") or DEFAULT_MODEL
        self._temperature = float(config.get("temperature", 0.7))
        self._max_tokens = int(config.get("max_tokens", 1024))
        self._json_mode = bool(config.get("json_mode", True))
        self._client = AsyncGroq(api_key=api_key)
        logger.info(f"Groq generator ready (model: {self._model}, json_mode: {self._json_mode})")

    def _build_request(
        self,
        prompt: str,
        system_prompt: Optional[str],
        temperature: float,
        max_tokens: int
    ) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        request: Dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if self._json_mode:
            request["response_format"] = {"type": "json_object"}
        return request

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> str:
        """
        Run a single completion and return the message text.

        Returns:
            str: Message content, empty when the model returned no choices

        Raises:
            RuntimeError: Not initialized, or the Groq call failed
            ValueError: Temperature outside 0.0-2.0
        """
        if self._client is None:
            raise RuntimeError("Groq client not initialized. Call initialize() first.")

        if temperature is None:
            temperature = self._temperature
        if not 0.0 <= temperature <= 2.0:
            raise ValueError(f"Temperature must be between 0.0 and 2.0, got {temperature}")

        request = self._build_request(prompt, system_prompt, temperature, max_tokens or self._max_tokens)
        try:
            completion = await self._client.chat.completions.create(**request)
        except Exception as e:
            raise RuntimeError(f"Groq completion failed: {e}") from e

        if not completion.choices:
            logger.warning(f"Groq returned no choices (model: {self._model})")
            return ""
        return completion.choices[0].message.content or ""

    async def cleanup(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def name(self) -> str:
        return "groq"

    def __repr__(self) -> str:
        return f"GroqLLMProvider(model={self._model}, json_mode={self._json_mode})"
