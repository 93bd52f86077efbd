"""
Content Generator Factory

Each registered generator pairs its provider class with a function that
reads that provider's settings, so the container can build and
initialize a generator from a name alone.
"""
from typing import Callable, Dict, List, Tuple, Type

from outreach.core.config import Settings
from outreach.domain.interfaces.llm_provider import LLMProvider
from outreach.infrastructure.llm.groq import GroqLLMProvider

ConfigBuilder = Callable[[Settings], dict]


class LLMFactory:
    """Registry of email content generators keyed by provider name"""

    _providers: Dict[str, Tuple[Type[LLMProvider], ConfigBuilder]] = {}

    @classmethod
    def register(cls, name: str, provider_class: Type[LLMProvider], config_builder: ConfigBuilder) -> None:
        cls._providers[name] = (provider_class, config_builder)

    @classmethod
    def _lookup(cls, name: str) -> Tuple[Type[LLMProvider], ConfigBuilder]:
        try:
            return cls._providers[name]
        except KeyError:
            available = ", ".join(sorted(cls._providers)) or "none"
            raise ValueError(f"Unknown LLM provider '{name}' (registered: {available})") from None

    @classmethod
    def create(cls, name: str) -> LLMProvider:
        provider_class, _ = cls._lookup(name)
        return provider_class()

    @classmethod
    def provider_config(cls, name: str, settings: Settings) -> dict:
        """Initialization config for the named provider"""
        _, build = cls._lookup(name)
        return build(settings)

    @classmethod
    def list_providers(cls) -> List[str]:
        return sorted(cls._providers)


def _groq_config(settings: Settings) -> dict:
    return {
        "api_key": settings.groq_api_key,
        "model": settings.llm_model,
        "temperature": settings.llm_temperature,
        "max_tokens": 1024,
    }


LLMFactory.register("groq", GroqLLMProvider, _groq_config)
