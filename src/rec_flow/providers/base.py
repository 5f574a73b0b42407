"""Base abstraction for external metadata providers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

RawRecord = Dict[str, Any]


class MetadataProvider(ABC):
    """Authoritative metadata source.

    Records are open, loosely-typed mappings; key names differ between
    providers and sometimes between endpoints of the same provider.
    Implementations raise ``ProviderUnavailable`` for transport failures and
    ``ProviderRejected`` when the provider refuses the request outright.
    """

    name = "provider"

    @abstractmethod
    def lookup_by_id(self, external_id: str) -> Optional[RawRecord]:
        """Fetch one record by identifier, or None if it does not exist."""
        pass

    @abstractmethod
    def lookup_by_title(self, title: str, year: Optional[int] = None) -> List[RawRecord]:
        """Search by title and optional year. May return zero, one or many records."""
        pass

    def close(self) -> None:
        """Release network resources."""
        pass
