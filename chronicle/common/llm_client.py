"""
Provider-agnostic LLM client for Chronicle.

Provider selection is a closed variant (OllamaModel | OpenAIModel) resolved
once at the boundary from caller-supplied strings. Both providers share a
text-generation, embedding and health-check interface with a bounded-time
contract: transport timeouts raise UpstreamTimeout, every other transport
failure raises UpstreamUnavailable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Union

import httpx
import openai

from .config import LLMConfig
from .errors import InvalidInput, UpstreamTimeout, UpstreamUnavailable

logger = logging.getLogger("chronicle.common.llm_client")


@dataclass(frozen=True)
class OllamaModel:
    """A model served by a local Ollama daemon"""
    name: str
    provider: ClassVar[str] = "ollama"

    @property
    def label(self) -> str:
        return f"{self.provider}:{self.name}"


@dataclass(frozen=True)
class OpenAIModel:
    """A model served by the OpenAI API (or a compatible endpoint)"""
    name: str
    provider: ClassVar[str] = "openai"

    @property
    def label(self) -> str:
        return f"{self.provider}:{self.name}"


ModelSpec = Union[OllamaModel, OpenAIModel]


def resolve_model(provider: Optional[str], model: Optional[str], config: LLMConfig) -> ModelSpec:
    """
    Validate caller-supplied provider/model strings into a ModelSpec.

    An empty provider falls back to the configured one; an empty or
    "default" model falls back to the provider's configured model.

    Raises:
        InvalidInput: provider is not "ollama" or "openai"
    """
    name = (provider or config.provider or "").strip().lower()
    model = (model or "").strip()
    if model.lower() == "default":
        model = ""

    if name == "ollama":
        return OllamaModel(model or config.ollama_model)
    if name == "openai":
        return OpenAIModel(model or config.openai_model)

    raise InvalidInput(
        f"Unsupported provider: {provider!r}. Use 'ollama' or 'openai'.",
        detail={"provider": provider},
    )


class LLMClient:
    """Unified text generation client across LLM providers."""

    def __init__(self, spec: ModelSpec, config: LLMConfig) -> None:
        self.spec = spec
        self._config = config
        self._timeout = config.timeout
        self._client: Any = None

        if isinstance(spec, OllamaModel):
            self._client = httpx.Client(
                base_url=config.ollama_url.rstrip("/"),
                timeout=config.timeout,
            )
            return

        if isinstance(spec, OpenAIModel):
            if not config.openai_api_key:
                logger.info("%s API key not provided, LLM client unavailable", spec.provider)
                return
            self._client = openai.OpenAI(
                api_key=config.openai_api_key,
                base_url=config.openai_base_url or None,
                timeout=config.timeout,
                max_retries=0,
            )
            return

        raise InvalidInput(f"Unsupported model spec: {spec!r}")

    @property
    def is_available(self) -> bool:
        return self._client is not None

    @property
    def model_used(self) -> str:
        return self.spec.name

    def close(self) -> None:
        if isinstance(self._client, httpx.Client):
            self._client.close()

    # ------------------------------------------------------------------ #
    # Generation
    # ------------------------------------------------------------------ #

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.3,
        timeout: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        if not self.is_available:
            raise UpstreamUnavailable(
                f"LLM client is not available ({self.spec.label})",
                detail={"provider": self.spec.provider},
            )

        timeout = timeout or self._timeout

        if isinstance(self.spec, OllamaModel):
            body: Dict[str, Any] = {
                "model": self.spec.name,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            }
            if system:
                body["system"] = system
            if json_mode:
                body["format"] = "json"
            data = self._ollama_post("/api/generate", body, timeout)
            return str(data.get("response", "")).strip()

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        kwargs: Dict[str, Any] = {
            "model": self.spec.name,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
            "timeout": timeout,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = self._openai_call(lambda: self._client.chat.completions.create(**kwargs))
        return (response.choices[0].message.content or "").strip()

    def embed(self, texts: List[str], *, model: Optional[str] = None) -> List[List[float]]:
        """Embed texts with the provider's embedding endpoint."""
        if not texts:
            return []
        if not self.is_available:
            raise UpstreamUnavailable(f"LLM client is not available ({self.spec.label})")

        model = model or self._config.embedding_model

        if isinstance(self.spec, OllamaModel):
            vectors = []
            for text in texts:
                data = self._ollama_post(
                    "/api/embeddings", {"model": model, "prompt": text}, self._timeout
                )
                vectors.append([float(v) for v in data.get("embedding", [])])
            return vectors

        response = self._openai_call(
            lambda: self._client.embeddings.create(model=model, input=texts)
        )
        return [list(item.embedding) for item in response.data]

    def health(self) -> Dict[str, Any]:
        """Reachability check. Never raises."""
        status: Dict[str, Any] = {
            "provider": self.spec.provider,
            "model": self.spec.name,
        }
        if not self.is_available:
            status.update(ok=False, error="client not configured")
            return status

        try:
            if isinstance(self.spec, OllamaModel):
                response = self._client.get("/api/tags", timeout=5.0)
                response.raise_for_status()
                payload = response.json()
                models = payload.get("models", []) if isinstance(payload, dict) else []
                installed = {m.get("name", "") for m in models if isinstance(m, dict)}
                status["model_installed"] = (
                    self.spec.name in installed or f"{self.spec.name}:latest" in installed
                )
            else:
                self._client.models.list()
            status["ok"] = True
        except (httpx.HTTPError, openai.APIError, ValueError) as e:
            status.update(ok=False, error=str(e) or type(e).__name__)
        return status

    # ------------------------------------------------------------------ #
    # Transport helpers
    # ------------------------------------------------------------------ #

    def _ollama_post(self, path: str, body: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        try:
            response = self._client.post(path, json=body, timeout=timeout)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(
                f"Ollama timed out after {timeout:.0f}s (model={self.spec.name})"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(
                f"Cannot reach Ollama at {self._config.ollama_url}: {e}"
            ) from e

        if response.status_code >= 400:
            detail = response.text[:200] if response.text else ""
            raise UpstreamUnavailable(
                f"Ollama request failed (model={self.spec.name}): "
                f"HTTP {response.status_code}. {detail}",
                detail={"status_code": response.status_code},
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamUnavailable(
                f"Ollama returned a non-JSON reply (model={self.spec.name})"
            ) from e
        if not isinstance(payload, dict):
            raise UpstreamUnavailable(
                f"Ollama returned an unexpected reply (model={self.spec.name})"
            )
        return payload

    def _openai_call(self, call):
        try:
            return call()
        except openai.APITimeoutError as e:
            raise UpstreamTimeout(f"OpenAI timed out (model={self.spec.name})") from e
        except openai.APIError as e:
            raise UpstreamUnavailable(f"OpenAI request failed (model={self.spec.name}): {e}") from e
