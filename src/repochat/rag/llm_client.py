"""LiteLLM client wrapper: embeddings, streamed chat completions, key validation.

All embedding and completion calls in the ingest and chat pipelines route
through this module. LiteLLM's built-in retry is used (num_retries,
exponential backoff); every call carries an explicit timeout so a stalled
provider cannot hang an ingestion run or a chat request forever.
"""

from __future__ import annotations

import os
from collections.abc import Iterator

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def key_env_var(provider: str) -> str | None:
    """Return the env var holding the API key for *provider* (None = no key needed)."""
    return _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = key_env_var(provider)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def embed(
    model: str,
    text: str,
    timeout: float | None = None,
    num_retries: int = 3,
) -> list[float]:
    """Call litellm.embedding() with retry/backoff. Returns the embedding vector.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        text: Text to embed.
        timeout: Seconds per attempt.
        num_retries: Number of retries on transient errors.
    """
    response = litellm.embedding(
        model=model,
        input=[text],
        timeout=timeout,
        num_retries=num_retries,
    )
    return list(response.data[0]["embedding"])


def stream_complete(
    model: str,
    system_prompt: str,
    user_message: str,
    max_tokens: int = 2048,
    temperature: float = 0.2,
    timeout: float | None = None,
    num_retries: int = 3,
) -> Iterator[str]:
    """Stream a chat completion; yields each non-empty text delta as it arrives.

    Retries only apply to opening the stream. Errors raised while iterating
    propagate to the consumer.
    """
    response = litellm.completion(
        model=model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ],
        max_tokens=max_tokens,
        temperature=temperature,
        timeout=timeout,
        num_retries=num_retries,
        stream=True,
    )
    for chunk in response:
        choices = getattr(chunk, "choices", None) or []
        if not choices:
            continue
        delta = getattr(choices[0], "delta", None)
        text = getattr(delta, "content", None) if delta is not None else None
        if text:
            yield text
