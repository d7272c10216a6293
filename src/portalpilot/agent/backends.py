"""
Generation backends for the Co-Pilot.

This module is the only place that *directly* calls an LLM.  Everything else (generation client,
agent loop, tools) stays provider-agnostic and only sees raw response text or a
:class:`BackendError`.

We support two back-ends out of the box:

1. **Google Gemini** via its REST API (``httpx``), with the response schema attached so the model is
   constrained to emit JSON of that shape.
2. **OpenAI** via the official SDK in JSON-object mode, with the schema spelled out in the system
   prompt.

Additional providers can be added by subclassing :class:`GenerationBackend` and registering via
:func:`register_backend`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    Mapping,
    Optional,
    Sequence,
    Type,
)

import httpx
from pydantic import BaseModel

from portalpilot.core.schema import ToolDeclaration

logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Raised when the backend call itself fails (transport, HTTP status, empty reply)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendConfig(BaseModel):
    """Connection and sampling parameters for one backend."""

    api_key: str | None = None
    model: str
    base_url: str | None = None
    temperature: float = 0.2
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int = 2048
    timeout: float = 60.0


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_BACKEND_REGISTRY: dict[str, Type["GenerationBackend"]] = {}


def register_backend(name: str) -> Callable:
    """Decorator to register a backend class under *name*."""

    def wrapper(cls: Type["GenerationBackend"]) -> Type["GenerationBackend"]:
        _BACKEND_REGISTRY[name] = cls
        return cls

    return wrapper


def load_backend(name: str, config: BackendConfig) -> "GenerationBackend":
    """Factory that returns an instantiated backend registered under *name*."""
    cls = _BACKEND_REGISTRY.get(name.lower())
    if cls is None:
        raise ValueError(f"Backend '{name}' is not registered.")
    return cls(config)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class GenerationBackend(ABC):
    """Abstract backend that turns a prompt plus a response schema into raw JSON text."""

    def __init__(self, config: BackendConfig) -> None:
        self.config = config

    @staticmethod
    def _build_system_prompt(
        system_instruction: str, tools: Sequence[ToolDeclaration] = ()
    ) -> str:
        """Append the declared tools to *system_instruction*."""
        if not tools:
            return system_instruction

        tools_info = []
        for tool in tools:
            param_desc = ", ".join(
                f"{p.name}: {p.type}{'' if p.required else '?'}" for p in tool.parameters
            )
            tools_info.append(f"- {tool.name}({param_desc}): {tool.description}")
        return system_instruction + "\n\nAvailable tools:\n" + "\n".join(tools_info)

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        system_instruction: str,
        response_schema: Mapping[str, Any],
        tools: Sequence[ToolDeclaration] = (),
    ) -> str:
        """Return the raw response text; raise :class:`BackendError` on failure."""

    async def close(self) -> None:
        """Release any connection held by the backend."""


# ---------------------------------------------------------------------------
# Concrete backends
# ---------------------------------------------------------------------------
@register_backend("gemini")
class GeminiBackend(GenerationBackend):
    """Gemini ``generateContent`` over REST with a response schema attached."""

    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, config: BackendConfig, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config)
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    def _build_payload(
        self,
        prompt: str,
        system_instruction: str,
        response_schema: Mapping[str, Any],
        tools: Sequence[ToolDeclaration],
    ) -> Dict[str, Any]:
        return {
            "systemInstruction": {
                "parts": [{"text": self._build_system_prompt(system_instruction, tools)}]
            },
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "topP": self.config.top_p,
                "topK": self.config.top_k,
                "maxOutputTokens": self.config.max_output_tokens,
                "responseMimeType": "application/json",
                "responseSchema": dict(response_schema),
            },
        }

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            error = resp.json().get("error", {})
            status = error.get("status", "ERROR")
            return f"{status} ({resp.status_code}): {error.get('message', '')}"
        except (ValueError, AttributeError):
            return f"HTTP {resp.status_code}: {resp.text[:200]}"

    async def generate(
        self,
        prompt: str,
        *,
        system_instruction: str,
        response_schema: Mapping[str, Any],
        tools: Sequence[ToolDeclaration] = (),
    ) -> str:
        base_url = (self.config.base_url or self.DEFAULT_BASE_URL).rstrip("/")
        endpoint = f"{base_url}/models/{self.config.model}:generateContent"
        payload = self._build_payload(prompt, system_instruction, response_schema, tools)

        try:
            resp = await self._get_client().post(
                endpoint,
                json=payload,
                headers={"x-goog-api-key": self.config.api_key or ""},
            )
        except httpx.HTTPError as exc:
            logger.error("Gemini request error: %s", exc)
            raise BackendError(f"Error calling Gemini: {exc}") from exc

        if resp.status_code >= 400:
            raise BackendError(self._error_message(resp), status_code=resp.status_code)

        body = resp.json()
        candidates = body.get("candidates") or []
        if not candidates:
            block_reason = body.get("promptFeedback", {}).get("blockReason", "unknown")
            raise BackendError(f"Gemini returned no candidates (blockReason={block_reason})")

        parts = candidates[0].get("content", {}).get("parts", [])
        content = "".join(part.get("text", "") for part in parts)
        logger.debug("Gemini response: %s", content)
        return content

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self._client = None


@register_backend("openai")
class OpenAIBackend(GenerationBackend):
    """OpenAI chat completions in JSON-object mode."""

    async def generate(
        self,
        prompt: str,
        *,
        system_instruction: str,
        response_schema: Mapping[str, Any],
        tools: Sequence[ToolDeclaration] = (),
    ) -> str:
        import openai  # pylint: disable=import-outside-toplevel

        client = openai.AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
        )
        system_prompt = (
            self._build_system_prompt(system_instruction, tools)
            + "\n\nResponse JSON schema:\n"
            + json.dumps(response_schema)
        )

        try:
            resp = await client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.config.temperature,
                top_p=self.config.top_p,
                max_tokens=self.config.max_output_tokens,
                response_format={"type": "json_object"},
            )
        except openai.APIStatusError as exc:
            raise BackendError(f"Error calling OpenAI: {exc}", status_code=exc.status_code) from exc
        except openai.OpenAIError as exc:
            raise BackendError(f"Error calling OpenAI: {exc}") from exc
        finally:
            await client.close()

        content = resp.choices[0].message.content
        if not content:
            raise BackendError("Empty response from OpenAI")

        logger.debug("OpenAI response: %s", content)
        return content
