"""
OpenAI SDK Client

Wrapper around the OpenAI SDK used as the LLM provider for SQL generation.
Works with OpenAI itself or any OpenAI-compatible endpoint (OPENAI_BASE_URL).
"""

import logging

from openai import OpenAI
from config import (
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    MODEL_NAME,
    MAX_NEW_TOKENS,
    TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
)
from exceptions import ProviderError


logger = logging.getLogger(__name__)


class OpenAIClient:
    """Client for the LLM provider using the OpenAI SDK."""

    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        base_url: str = OPENAI_BASE_URL,
        model: str = MODEL_NAME,
        timeout: float = LLM_TIMEOUT_SECONDS
    ):
        if not api_key:
            raise ProviderError(
                "OpenAI API key not found!\n"
                "Please add your API key to the .env file:\n"
                "OPENAI_API_KEY=your-api-key"
            )

        self.client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )
        self.model = model

    def generate_text(
        self,
        prompt: str,
        max_tokens: int = MAX_NEW_TOKENS,
        temperature: float = TEMPERATURE,
        system_prompt: str = None
    ) -> str:
        """
        Generate text using the provider's chat completions API.

        Args:
            prompt: The input prompt for generation
            max_tokens: Maximum number of tokens to generate
            temperature: Sampling temperature (lower = more deterministic)
            system_prompt: Optional system prompt to set context

        Returns:
            Generated text response

        Raises:
            ProviderError: If the call fails for any reason
        """
        try:
            messages = []

            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})

            messages.append({"role": "user", "content": prompt})

            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature
            )

            return response.choices[0].message.content or ""

        except Exception as e:
            error_msg = str(e)
            logger.error("LLM provider call failed: %s", error_msg)
            if "401" in error_msg or "unauthorized" in error_msg.lower():
                raise ProviderError(
                    "Invalid OpenAI API key. "
                    "Please check your API key in the .env file."
                ) from e
            elif "rate" in error_msg.lower() or "429" in error_msg:
                raise ProviderError(
                    "Rate limit exceeded. Please wait a moment and try again."
                ) from e
            elif "timed out" in error_msg.lower() or "timeout" in error_msg.lower():
                raise ProviderError(
                    f"LLM request timed out: {error_msg}"
                ) from e
            elif "404" in error_msg or "not found" in error_msg.lower():
                raise ProviderError(
                    f"Model '{self.model}' not found. "
                    "Please check your model name in the .env file."
                ) from e
            else:
                raise ProviderError(f"API Error: {error_msg}") from e


# Singleton instance
_client = None

def get_client() -> OpenAIClient:
    """Get or create the OpenAI client singleton."""
    global _client
    if _client is None:
        _client = OpenAIClient()
    return _client
