import asyncio
from typing import Any, Dict, Iterable, List, Optional

from .base import GenerationResult, LLMClient, ModelInfo, ProviderError, Usage, split_model_id


def _estimate_tokens(text: str) -> int:
    # ~1 token per 4 chars as a crude approximation
    return max(1, int(len(text) / 4))


class MockClient(LLMClient):
    """Deterministic client for local runs and tests.

    Answers from `answers` when the prompt is known, otherwise echoes the prompt.
    Prompts listed in `failures` raise ProviderError; `delay` (seconds) simulates latency.
    """

    provider_name: str = "mock"

    def __init__(
        self,
        answers: Optional[Dict[str, str]] = None,
        failures: Optional[Iterable[str]] = None,
        delay: float = 0.0,
        models: Optional[List[Dict[str, Any]]] = None,
    ):
        self.answers = dict(answers or {})
        self.failures = set(failures or ())
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self._models = models or [
            {"id": "mock/echo-1", "context_length": 2048, "description": "Echoes the prompt"},
        ]

    def is_configured(self) -> bool:
        return True

    async def get_available_models(self) -> List[ModelInfo]:
        return [ModelInfo.from_raw(m) for m in self._models]

    async def generate_text(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> GenerationResult:
        if not prompt or not prompt.strip():
            raise ValueError("prompt must be a non-empty string")
        opts = dict(options or {})
        self.calls.append({"prompt": prompt, "options": opts})
        if self.delay:
            await asyncio.sleep(self.delay)
        if prompt in self.failures:
            raise ProviderError("mock provider failure", status_code=500, provider=self.provider_name)
        text = self.answers.get(prompt, prompt)
        tokens_in = _estimate_tokens(prompt)
        tokens_out = _estimate_tokens(text)
        model_id = str(opts.get("model") or "mock/echo-1")
        provider, name = split_model_id(model_id)
        return GenerationResult(
            text=text,
            usage=Usage(prompt_tokens=tokens_in, completion_tokens=tokens_out, total_tokens=tokens_in + tokens_out),
            latency_ms=max(1, int(self.delay * 1000)),
            model_info={"name": name, "provider": provider, "version": model_id},
        )
