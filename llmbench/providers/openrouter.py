import json
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from .. import __version__
from .base import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    GenerationResult,
    LLMClient,
    ModelInfo,
    ProviderError,
    Usage,
    split_model_id,
)

logger = logging.getLogger("llmbench.providers")

DEFAULT_MODEL = "openai/gpt-3.5-turbo"


class OpenRouterClient(LLMClient):
    provider_name: str = "openrouter"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 60.0,
        referer: str = "http://localhost:3000",
        title: str = "LLM Benchmarking Platform",
    ):
        self._api_key = (api_key or "").strip()
        self._base_url = base_url.rstrip("/")
        # HTTP-level timeout only; the engine bounds each test case separately
        self._timeout = timeout
        # Origin metadata (optional but recommended by OpenRouter)
        self._referer = referer
        self._title = title

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "User-Agent": f"llmbench/{__version__}",
            "HTTP-Referer": self._referer,
            "X-Title": self._title,
        }

    async def get_available_models(self) -> List[ModelInfo]:
        url = f"{self._base_url}/models"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers=self._headers())
        except Exception as e:
            raise ProviderError(f"OpenRouter models request failed: {type(e).__name__}: {e}", provider=self.provider_name) from e
        if resp.status_code >= 400:
            raise ProviderError(
                f"OpenRouter models error {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
                provider=self.provider_name,
            )
        try:
            data = resp.json()
        except Exception as e:
            raise ProviderError("OpenRouter models response is not JSON", provider=self.provider_name) from e
        if not isinstance(data, dict):
            raise ProviderError("OpenRouter models response is not a JSON object", provider=self.provider_name)
        raw_models = data.get("data")
        if not isinstance(raw_models, list):
            return []
        return [ModelInfo.from_raw(m) for m in raw_models if isinstance(m, dict) and m.get("id")]

    def _build_payload(self, prompt: str, options: Dict[str, Any]) -> Dict[str, Any]:
        opts = dict(options)
        payload: Dict[str, Any] = {
            "model": opts.pop("model", None) or DEFAULT_MODEL,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": opts.pop("temperature", None),
            "max_tokens": opts.pop("max_tokens", None),
            "top_p": opts.pop("top_p", None),
            "frequency_penalty": opts.pop("frequency_penalty", None),
            "presence_penalty": opts.pop("presence_penalty", None),
        }
        if payload["temperature"] is None:
            payload["temperature"] = DEFAULT_TEMPERATURE
        if payload["max_tokens"] is None:
            payload["max_tokens"] = DEFAULT_MAX_TOKENS
        if payload["top_p"] is None:
            payload["top_p"] = 1
        if payload["frequency_penalty"] is None:
            payload["frequency_penalty"] = 0
        if payload["presence_penalty"] is None:
            payload["presence_penalty"] = 0
        # Remaining model parameters (stop, seed, ...) pass through untouched
        for key, value in opts.items():
            if value is not None:
                payload[key] = value
        return payload

    async def generate_text(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> GenerationResult:
        if not prompt or not prompt.strip():
            raise ValueError("prompt must be a non-empty string")
        payload = self._build_payload(prompt, options or {})
        url = f"{self._base_url}/chat/completions"
        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, headers=self._headers(), json=payload)
        except Exception as e:
            raise ProviderError(f"OpenRouter request failed: {type(e).__name__}: {e}", provider=self.provider_name) from e
        latency_ms = int((time.perf_counter() - start) * 1000)

        if resp.status_code >= 400:
            logger.info(json.dumps({
                "event": "provider_error",
                "provider": self.provider_name,
                "model": payload["model"],
                "status": resp.status_code,
            }))
            raise ProviderError(
                f"OpenRouter error {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
                provider=self.provider_name,
            )

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except Exception as e:
            raise ProviderError(
                f"OpenRouter returned a malformed completion: {type(e).__name__}",
                status_code=resp.status_code,
                provider=self.provider_name,
            ) from e
        if content is None:
            raise ProviderError("OpenRouter returned an empty completion", status_code=resp.status_code, provider=self.provider_name)

        provider, name = split_model_id(str(data.get("model") or payload["model"]))
        return GenerationResult(
            text=str(content),
            usage=Usage.from_dict(data.get("usage")),
            latency_ms=latency_ms,
            model_info={"name": name, "provider": provider, "version": payload["model"]},
            raw_response=data,
        )
