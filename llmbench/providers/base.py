from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Applied when the caller leaves them unset; benchmarking wants deterministic output
DEFAULT_TEMPERATURE = 0.0
DEFAULT_MAX_TOKENS = 1000


class ProviderError(Exception):
    """Raised when an upstream provider call fails.

    Carries the upstream HTTP status (when there was a response) and message.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, provider: str = "unknown"):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "Usage":
        raw = raw or {}

        def _int(key: str) -> int:
            try:
                return int(raw.get(key) or 0)
            except (TypeError, ValueError):
                return 0

        prompt = _int("prompt_tokens")
        completion = _int("completion_tokens")
        total = _int("total_tokens") or prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ModelInfo:
    id: str
    name: str
    provider: str
    context_length: int = 4096
    description: str = ""

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "ModelInfo":
        """Normalize a raw `/models` descriptor (`{"id": "provider/name", ...}`)."""
        model_id = str(raw.get("id") or "")
        provider, name = split_model_id(model_id)
        return cls(
            id=model_id,
            name=name,
            provider=provider,
            context_length=raw.get("context_length") or 4096,
            description=raw.get("description") or f"{provider} model: {name}",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "context_length": self.context_length,
            "description": self.description,
        }


@dataclass
class GenerationResult:
    text: str
    usage: Usage
    latency_ms: int
    model_info: Dict[str, str] = field(default_factory=dict)
    raw_response: Optional[Dict[str, Any]] = None


def split_model_id(model_id: str) -> tuple[str, str]:
    """Split `"provider/name"`; provider is "unknown" when there is no separator."""
    parts = (model_id or "").split("/")
    if len(parts) > 1:
        return parts[0], parts[1]
    return "unknown", parts[0]


class LLMClient(abc.ABC):
    """Abstract chat-completion client for one provider API."""

    provider_name: str = "unknown"

    @abc.abstractmethod
    async def generate_text(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> GenerationResult:
        ...

    @abc.abstractmethod
    async def get_available_models(self) -> List[ModelInfo]:
        ...

    @abc.abstractmethod
    def is_configured(self) -> bool:
        ...
