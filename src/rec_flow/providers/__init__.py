"""Metadata providers."""

from typing import Any, Dict

from ..models import ConfigError
from .base import MetadataProvider, RawRecord
from .omdb import OmdbProvider

PROVIDERS = {"omdb": OmdbProvider}


def create_provider(config: Dict[str, Any]) -> MetadataProvider:
    """Build the provider named by ``config["type"]`` (default omdb)."""
    provider_type = config.get("type", "omdb")
    try:
        provider_cls = PROVIDERS[provider_type]
    except KeyError:
        raise ConfigError(f"Unknown provider type: {provider_type}") from None
    return provider_cls(config)
