"""
Call Provider Factory
Resolves the configured call provider and the settings it initializes from
"""
from typing import Callable, Dict, List, Tuple, Type

from outreach.core.config import Settings
from outreach.domain.interfaces.telephony_provider import TelephonyProvider
from outreach.infrastructure.telephony.elevenlabs_caller import ElevenLabsCaller

ConfigBuilder = Callable[[Settings], dict]


class TelephonyFactory:
    """Registry of outbound call providers keyed by provider name"""

    _providers: Dict[str, Tuple[Type[TelephonyProvider], ConfigBuilder]] = {}

    @classmethod
    def register(
        cls,
        name: str,
        provider_class: Type[TelephonyProvider],
        config_builder: ConfigBuilder
    ) -> None:
        cls._providers[name] = (provider_class, config_builder)

    @classmethod
    def _lookup(cls, name: str) -> Tuple[Type[TelephonyProvider], ConfigBuilder]:
        if name not in cls._providers:
            available = ", ".join(sorted(cls._providers)) or "none"
            raise ValueError(f"Unknown call provider '{name}' (registered: {available})")
        return cls._providers[name]

    @classmethod
    def create(cls, name: str) -> TelephonyProvider:
        provider_class, _ = cls._lookup(name)
        return provider_class()

    @classmethod
    def provider_config(cls, name: str, settings: Settings) -> dict:
        _, build = cls._lookup(name)
        return build(settings)

    @classmethod
    def list_providers(cls) -> List[str]:
        return sorted(cls._providers)


def _elevenlabs_config(settings: Settings) -> dict:
    # Identities may still carry their own api_key
    return {"api_key": settings.elevenlabs_api_key}


TelephonyFactory.register("elevenlabs", ElevenLabsCaller, _elevenlabs_config)
