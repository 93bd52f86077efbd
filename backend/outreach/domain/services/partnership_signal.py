"""
Partnership Signal Extraction
Tolerant parsing of the tri-state partnership flag from call analysis

The conversation analysis payload is free-form. Strategies are tried in
order and the first one that yields a definite answer wins; when none
does, the signal is unknown (None), never False.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

TRUE_STRINGS = {"true", "yes"}
FALSE_STRINGS = {"false", "no"}

Strategy = Callable[[Dict[str, Any]], Optional[bool]]


def normalize_signal(value: Any) -> Optional[bool]:
    """Map a raw analysis value onto True / False / None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    return None


def direct_value(key: str) -> Strategy:
    """The known key holds the value itself."""
    def strategy(results: Dict[str, Any]) -> Optional[bool]:
        value = results.get(key)
        if isinstance(value, dict):
            return None
        return normalize_signal(value)
    return strategy


def wrapped_value(key: str) -> Strategy:
    """The known key holds an object with a ``value`` field."""
    def strategy(results: Dict[str, Any]) -> Optional[bool]:
        value = results.get(key)
        if isinstance(value, dict) and "value" in value:
            return normalize_signal(value["value"])
        return None
    return strategy


def fuzzy_key_scan(keywords: Sequence[str]) -> Strategy:
    """Any key whose name contains one of ``keywords``, plain or wrapped."""
    lowered_keywords = [k.lower() for k in keywords]

    def strategy(results: Dict[str, Any]) -> Optional[bool]:
        for key, value in results.items():
            key_lower = key.lower()
            if not any(word in key_lower for word in lowered_keywords):
                continue
            if isinstance(value, dict):
                value = value.get("value")
            signal = normalize_signal(value)
            if signal is not None:
                logger.debug(f"Partnership signal matched fuzzy key '{key}'")
                return signal
        return None
    return strategy


class PartnershipSignalExtractor:
    """Ordered strategy chain over ``analysis.data_collection_results``"""

    def __init__(self, signal_key: str, keywords: Optional[Sequence[str]] = None):
        self.strategies: List[Strategy] = [
            direct_value(signal_key),
            wrapped_value(signal_key),
            fuzzy_key_scan(keywords or ["partner", "infinity"]),
        ]

    def extract(self, data_collection_results: Optional[Dict[str, Any]]) -> Optional[bool]:
        if not data_collection_results:
            return None

        for strategy in self.strategies:
            signal = strategy(data_collection_results)
            if signal is not None:
                return signal

        return None
