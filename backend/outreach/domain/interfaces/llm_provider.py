"""
Content Generator Interface
Text generation used to draft follow-up emails
"""
from abc import ABC, abstractmethod
from typing import Optional


class LLMProvider(ABC):
    """
    Generates email copy from a prompt.

    Implementations return the raw model text. Parsing it into subject and
    body, and falling back to a template, is the executor's job.
    """

    @abstractmethod
    async def initialize(self, config: dict) -> None:
        """
        Prepare the client.

        Raises:
            ValueError: Required credentials are missing
        """

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> str:
        """Return the model's reply to a single prompt (may wrap JSON in prose)."""

    @abstractmethod
    async def cleanup(self) -> None:
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        ...
