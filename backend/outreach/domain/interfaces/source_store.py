"""
Source Record Store Interface
Read access to enrolled source documents and patching of their outreach field
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from outreach.domain.models.campaign_record import SourceRef


class SourceRecordStore(ABC):
    """Abstract base class for the originating document store"""

    @abstractmethod
    async def get(self, source_ref: SourceRef) -> Optional[Dict[str, Any]]:
        """Fetch the source document, or None if it does not exist"""
        pass

    @abstractmethod
    async def patch_outreach(self, source_ref: SourceRef, patch: Dict[str, Any]) -> None:
        """
        Deep-merge ``patch`` into the document's ``outreach`` sub-document.

        Nothing outside ``outreach`` is ever written.
        """
        pass


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
