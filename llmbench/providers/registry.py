import json
import logging
from typing import Dict, List, Mapping, Optional

from ..bench.models import Model
from ..config import Settings
from .base import LLMClient
from .mock import MockClient
from .openrouter import OpenRouterClient

logger = logging.getLogger("llmbench.providers")


class ConnectorRegistry:
    """Provider name -> configured client, built once at startup.

    A model whose provider has no dedicated connector falls back to the default
    connector (OpenRouter routes every `provider/name` model id itself).
    """

    def __init__(self, connectors: Optional[Mapping[str, LLMClient]] = None, default: Optional[str] = "openrouter"):
        self._connectors: Dict[str, LLMClient] = {}
        self._default = (default or "").lower() or None
        for name, client in (connectors or {}).items():
            self.register(name, client)

    def register(self, name: str, client: LLMClient) -> None:
        self._connectors[name.lower()] = client

    def resolve(self, provider_name: Optional[str]) -> Optional[LLMClient]:
        if not provider_name:
            return None
        return self._connectors.get(provider_name.lower())

    def resolve_for_model(self, model: Model) -> Optional[LLMClient]:
        """Give back a client for this model, or None when nothing suitable is configured."""
        client = self.resolve(model.provider)
        if client is not None:
            return client
        return self.resolve(self._default)

    def names(self) -> List[str]:
        return list(self._connectors.keys())

    def is_empty(self) -> bool:
        return not self._connectors


def build_registry(settings: Settings) -> ConnectorRegistry:
    """Register every connector whose credentials are present."""
    registry = ConnectorRegistry(default=settings.default_provider)
    if settings.openrouter_api_key:
        registry.register(
            "openrouter",
            OpenRouterClient(
                api_key=settings.openrouter_api_key,
                base_url=settings.openrouter_base_url,
                timeout=settings.openrouter_timeout_seconds,
                referer=settings.app_origin,
                title=settings.app_title,
            ),
        )
    if settings.mock_provider_enabled:
        registry.register("mock", MockClient())
    logger.info(json.dumps({"event": "connectors_configured", "connectors": registry.names(), "default": settings.default_provider}))
    return registry
