"""
OpenAI-compatible LLM adapter.

OpenAI, Ollama, LM Studio and vLLM all expose the OpenAI chat completions
API, so one adapter covers them; the providers differ only in base URL and
API key handling.

Usage:
    from ai_permissions.compiler.providers import create_adapter
    from ai_permissions.schema import CompilerConfig

    with create_adapter(CompilerConfig(provider="ollama", model="qwen2.5:7b")) as llm:
        text = llm.complete("...")
"""

import json
import logging
import os
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from ai_permissions.compiler.base import LLMAdapter
from ai_permissions.errors import (
    CompilerConfigError,
    CompilerConnectionError,
    CompilerModelNotFoundError,
    CompilerParseError,
    CompilerTimeoutError,
)
from ai_permissions.schema import CompilerConfig

logger = logging.getLogger(__name__)

# Used when an OpenAI primary model cannot serve chat requests
DEFAULT_FALLBACK_MODEL = "gpt-4o-mini"

# 404 bodies meaning "this model only supports /completions"
_CHAT_UNSUPPORTED = re.compile(r"not a chat model|chat/completions", re.IGNORECASE)


@dataclass(frozen=True)
class ProviderPreset:
    """
    Connection defaults for a known provider.

    Attributes:
        base_url: OpenAI-compatible API root (ends in /v1)
        api_key_env: Environment variable read for the API key
        default_api_key: Key sent when the environment has none
        requires_api_key: Whether the provider refuses anonymous requests
    """

    base_url: str
    api_key_env: str | None = None
    default_api_key: str | None = None
    requires_api_key: bool = False


PROVIDER_PRESETS: dict[str, ProviderPreset] = {
    "openai": ProviderPreset(
        base_url="https://api.openai.com/v1",
        api_key_env="OPENAI_API_KEY",
        requires_api_key=True,
    ),
    "ollama": ProviderPreset(base_url="http://127.0.0.1:11434/v1", default_api_key="ollama"),
    "lm-studio": ProviderPreset(base_url="http://localhost:1234/v1", default_api_key="lm-studio"),
    "lmstudio": ProviderPreset(base_url="http://localhost:1234/v1", default_api_key="lm-studio"),
    "vllm": ProviderPreset(base_url="http://127.0.0.1:8000/v1"),
}


class _ChatUnsupported(Exception):
    """The model exists but only serves /completions."""


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes and make sure the URL ends in /v1."""
    url = url.rstrip("/")
    if not url.endswith("/v1"):
        url += "/v1"
    return url


class OpenAICompatibleAdapter(LLMAdapter):
    """
    LLM adapter for any server speaking the OpenAI chat completions API.

    Features:
        - Retries connection failures and timeouts
        - Falls back to /completions for models that reject chat requests
        - Optionally retries once with a fallback model when the primary
          model is not served

    Example:
        llm = OpenAICompatibleAdapter(
            base_url="http://127.0.0.1:11434/v1",
            model="qwen2.5:7b",
            provider="ollama",
        )
        text = llm.complete("Convert these rules ...")
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str | None = None,
        provider: str = "openai",
        timeout_seconds: float = 60.0,
        max_retries: int = 2,
        retry_delay_seconds: float = 1.0,
        fallback_model: str | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.fallback_model = fallback_model
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                headers=headers,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def complete(self, prompt: str) -> str:
        """
        Complete a prompt, falling back to ``fallback_model`` if needed.

        Raises:
            CompilerConnectionError: Server unreachable or returned an error
            CompilerTimeoutError: Request timed out on every attempt
            CompilerModelNotFoundError: Neither model is served
            CompilerParseError: Reply had no text content
        """
        try:
            return self._complete_with_retries(self.model, prompt)
        except CompilerModelNotFoundError:
            if not self.fallback_model or self.fallback_model == self.model:
                raise
            logger.warning(
                "Model %s unavailable on %s; using %s for compile",
                self.model,
                self.provider,
                self.fallback_model,
            )
            return self._complete_with_retries(self.fallback_model, prompt)

    def _complete_with_retries(self, model: str, prompt: str) -> str:
        last_error: CompilerConnectionError | CompilerTimeoutError | None = None

        for attempt in range(self.max_retries + 1):
            try:
                return self._complete_once(model, prompt)
            except (CompilerConnectionError, CompilerTimeoutError) as e:
                last_error = e
                if attempt < self.max_retries:
                    logger.debug("Attempt %d for %s failed: %s", attempt + 1, model, e.message)
                    time.sleep(self.retry_delay_seconds)

        if last_error:
            raise last_error
        raise CompilerConnectionError(provider=self.provider, model=model, url=self.base_url)

    def _complete_once(self, model: str, prompt: str) -> str:
        try:
            return self._chat(model, prompt)
        except _ChatUnsupported:
            logger.info("%s is not a chat model; using /completions", model)
            return self._text_completion(model, prompt)

    def _chat(self, model: str, prompt: str) -> str:
        payload = {"model": model, "messages": [{"role": "user", "content": prompt}]}
        response = self._post("/chat/completions", payload, model)

        if response.status_code == 404 and _CHAT_UNSUPPORTED.search(response.text):
            raise _ChatUnsupported(response.text)

        data = self._read_json(response, model)
        message = _first_choice(data).get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise CompilerParseError(
                provider=self.provider,
                model=model,
                raw_response=str(data)[:500],
                parse_error="No response content from model",
            )
        return content

    def _text_completion(self, model: str, prompt: str) -> str:
        response = self._post("/completions", {"model": model, "prompt": prompt}, model)
        data = self._read_json(response, model)
        text = _first_choice(data).get("text")
        if not isinstance(text, str):
            raise CompilerParseError(
                provider=self.provider,
                model=model,
                raw_response=str(data)[:500],
                parse_error="No response content from model",
            )
        return text.strip()

    def _post(self, path: str, payload: dict[str, Any], model: str) -> httpx.Response:
        client = self._get_client()
        try:
            return client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise CompilerTimeoutError(
                provider=self.provider,
                model=model,
                timeout_seconds=self.timeout_seconds,
            ) from e
        except httpx.TransportError as e:
            raise CompilerConnectionError(
                provider=self.provider,
                model=model,
                url=self.base_url,
                underlying_error=str(e),
            ) from e

    def _read_json(self, response: httpx.Response, model: str) -> Any:
        if response.status_code == 404:
            raise CompilerModelNotFoundError(
                provider=self.provider,
                model=model,
                underlying_error=response.text[:500],
            )

        if response.status_code != 200:
            raise CompilerConnectionError(
                provider=self.provider,
                model=model,
                url=self.base_url,
                underlying_error=f"HTTP {response.status_code}: {response.text[:500]}",
            )

        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise CompilerParseError(
                provider=self.provider,
                model=model,
                raw_response=response.text[:500],
                parse_error=f"Invalid JSON from {self.provider}: {e}",
            ) from e

    def get_name(self) -> str:
        """Return adapter name."""
        return f"OpenAICompatibleAdapter({self.provider}/{self.model})"

    def get_config(self) -> dict[str, Any]:
        """Return adapter configuration (without the API key)."""
        return {
            "provider": self.provider,
            "base_url": self.base_url,
            "model": self.model,
            "fallback_model": self.fallback_model,
            "timeout_seconds": self.timeout_seconds,
            "max_retries": self.max_retries,
        }

    def check_connection(self) -> tuple[bool, str]:
        """
        Check that the server answers and lists the configured model.

        Returns:
            Tuple of (is_ok, message)
        """
        try:
            response = self._get_client().get("/models")
            if response.status_code != 200:
                return False, f"{self.provider} returned HTTP {response.status_code}"

            data = response.json()
            models = [m.get("id") for m in data.get("data", []) if isinstance(m, dict)]
            if models and self.model not in models:
                return False, f"Model '{self.model}' not listed. Available: {', '.join(models[:3])}"

            return True, f"Connected to {self.provider} at {self.base_url}"

        except httpx.ConnectError:
            return False, f"Cannot connect to {self.provider} at {self.base_url}. Is it running?"
        except Exception as e:
            return False, f"Error checking {self.provider}: {e}"


def _first_choice(data: Any) -> dict[str, Any]:
    choices = data.get("choices") if isinstance(data, dict) else None
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def create_adapter(
    config: CompilerConfig,
    env: Mapping[str, str] | None = None,
) -> OpenAICompatibleAdapter:
    """
    Build the adapter described by a compiler config.

    The API key comes from ``config.api_key_env`` or the provider's
    variable; local servers get a placeholder key. An OpenAI setup with
    no explicit ``fallback_model`` falls back to gpt-4o-mini.

    Args:
        config: Compiler settings
        env: Environment to read keys from (defaults to os.environ)

    Raises:
        CompilerConfigError: Unknown provider without base_url, or a hosted
            provider with no API key
    """
    env = os.environ if env is None else env
    preset = PROVIDER_PRESETS.get(config.provider.lower())

    if preset is None and not config.base_url:
        raise CompilerConfigError(
            provider=config.provider,
            model=config.model,
            message=f"Unknown provider {config.provider!r}",
            suggestion=f"Use one of {', '.join(PROVIDER_PRESETS)} or set compiler.base_url",
        )

    base_url = normalize_base_url(config.base_url) if config.base_url else preset.base_url

    key_env = config.api_key_env or (preset.api_key_env if preset else None)
    api_key = env.get(key_env) if key_env else None
    if not api_key and preset is not None:
        api_key = preset.default_api_key

    if not api_key and preset is not None and preset.requires_api_key:
        raise CompilerConfigError(
            provider=config.provider,
            model=config.model,
            message=f"No API key for {config.provider} (set {key_env})",
        )

    fallback_model = config.fallback_model
    if fallback_model is None and config.provider.lower() == "openai" and config.model != DEFAULT_FALLBACK_MODEL:
        fallback_model = DEFAULT_FALLBACK_MODEL

    return OpenAICompatibleAdapter(
        base_url=base_url,
        model=config.model,
        api_key=api_key,
        provider=config.provider,
        timeout_seconds=config.timeout_seconds,
        max_retries=config.max_retries,
        retry_delay_seconds=config.retry_delay_seconds,
        fallback_model=fallback_model,
    )
