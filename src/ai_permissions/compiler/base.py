"""
Base class for the LLM backends used by the rule compiler.

The compiler only needs one capability from a model: turn a prompt into
text. Everything provider-specific (endpoints, auth, fallbacks) lives in
the adapter.

Design Principles:
    - Model output is untrusted; the compiler repairs and validates it
    - Adapters own their HTTP client and release it in close()
    - Failures surface as CompilerError subclasses, never raw httpx errors
"""

from abc import ABC, abstractmethod
from typing import Any


class LLMAdapter(ABC):
    """
    Abstract text-completion backend.

    Implementations:
        - OpenAICompatibleAdapter: OpenAI, Ollama, LM Studio, vLLM

    Example Implementation:
        class CannedAdapter(LLMAdapter):
            def complete(self, prompt):
                return '{"rules": []}'

    Attributes:
        provider: Provider name used in error reports
        model: Model name used in error reports
    """

    provider: str = ""
    model: str = ""

    @abstractmethod
    def complete(self, prompt: str) -> str:
        """
        Send a single-turn prompt and return the model's text.

        Raises:
            CompilerConnectionError: Backend unreachable or returned an error
            CompilerTimeoutError: Backend took too long
            CompilerModelNotFoundError: Backend does not serve the model
            CompilerParseError: Backend reply had no text content
        """
        ...

    def get_name(self) -> str:
        """Return the adapter's name for logging."""
        return self.__class__.__name__

    def get_config(self) -> dict[str, Any]:
        """Return adapter configuration for debugging."""
        return {"provider": self.provider, "model": self.model}

    def close(self) -> None:
        """Release any held resources."""

    def __enter__(self) -> "LLMAdapter":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
