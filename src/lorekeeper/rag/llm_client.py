"""Provider capability interfaces and their LiteLLM implementations.

The core depends only on :class:`EmbeddingProvider` and
:class:`TextGenerationProvider`; any vendor client that offers the same
methods can be injected. Every call carries an explicit timeout and every
failure surfaces as :class:`~lorekeeper.errors.ProviderError`.
"""

from __future__ import annotations

import os
from typing import Protocol

import litellm

from lorekeeper.errors import ProviderError, ValidationError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

# Approximate provider input limit: 8k tokens at ~4 characters per token.
_MAX_INPUT_CHARS = 8_000 * 4


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider, "OPENAI_API_KEY")

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


# ------------------------------------------------------------------
# Capability interfaces
# ------------------------------------------------------------------


class EmbeddingProvider(Protocol):
    def generate_embedding(self, text: str) -> list[float]: ...

    def generate_embeddings(self, texts: list[str]) -> list[list[float]]: ...


class TextGenerationProvider(Protocol):
    def complete(self, system_prompt: str, user_prompt: str) -> str | None: ...


# ------------------------------------------------------------------
# LiteLLM implementations
# ------------------------------------------------------------------


def prepare_input(text: str, max_chars: int = _MAX_INPUT_CHARS) -> str:
    """Strip *text* and truncate it to *max_chars*, preferring a word boundary.

    Raises:
        ValidationError: If the text is empty after stripping.
    """
    text = text.strip()
    if not text:
        raise ValidationError("Input text cannot be empty.")
    if len(text) > max_chars:
        text = text[:max_chars]
        last_space = text.rfind(" ")
        if last_space > max_chars - 100:
            text = text[:last_space]
    return text


class LiteLLMEmbeddingProvider:
    """Embeddings via ``litellm.embedding()``.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Expected vector length; other lengths are malformed responses.
        timeout: Per-call timeout in seconds.
        num_retries: LiteLLM-level retries on transient errors.
    """

    def __init__(
        self,
        model: str = "openai/text-embedding-3-small",
        dimensions: int = 1536,
        timeout: float = 10.0,
        num_retries: int = 0,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.num_retries = num_retries

    def generate_embedding(self, text: str) -> list[float]:
        return self._embed([prepare_input(text)])[0]

    def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in one request; output order matches input order."""
        if not texts:
            raise ValidationError("Input texts cannot be empty.")
        return self._embed([prepare_input(t) for t in texts])

    def _embed(self, inputs: list[str]) -> list[list[float]]:
        try:
            response = litellm.embedding(
                model=self.model,
                input=inputs,
                timeout=self.timeout,
                num_retries=self.num_retries,
            )
        except Exception as exc:
            raise ProviderError(f"Embedding request to '{self.model}' failed: {exc}") from exc

        data = list(response.data or [])
        if len(data) != len(inputs):
            raise ProviderError(
                f"Embedding count mismatch: expected {len(inputs)}, got {len(data)}."
            )
        vectors = [list(item["embedding"]) for item in data]
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise ProviderError(
                    f"Embedding from '{self.model}' has {len(vector)} dimensions, "
                    f"expected {self.dimensions}."
                )
        return vectors


class LiteLLMTextProvider:
    """Chat completions via ``litellm.completion()``.

    Returns None when the provider answers with no choices; callers decide
    what to show instead.
    """

    def __init__(
        self,
        model: str = "openai/gpt-4o-mini",
        max_tokens: int = 1000,
        temperature: float = 0.7,
        timeout: float = 30.0,
        num_retries: int = 0,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.num_retries = num_retries

    def complete(self, system_prompt: str, user_prompt: str) -> str | None:
        try:
            response = litellm.completion(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                timeout=self.timeout,
                num_retries=self.num_retries,
            )
        except Exception as exc:
            raise ProviderError(f"Completion request to '{self.model}' failed: {exc}") from exc

        if not response.choices:
            return None
        return response.choices[0].message.content


def count_tokens(model: str, text: str) -> int:
    """Count tokens in *text* for *model* using LiteLLM's provider-aware counter.

    Falls back to character-based approximation (4 chars ≈ 1 token) if the model
    is not supported by litellm.token_counter().
    """
    try:
        return litellm.token_counter(model=model, text=text)
    except Exception:
        return max(1, len(text) // 4)
