"""
Model Client - the single boundary around the generative model.

Stages only ever see ``generate(prompt, settings) -> text``. Every failure
on the far side of that call (transport error, timeout, rate limit, empty
candidate) is reported as ModelInvocationError so the caller can decide
whether to retry.
"""

from typing import Optional, Protocol
from loguru import logger

from google import genai
from google.genai import types

from fundreview.config import GenerationSettings, PipelineConfig
from fundreview.error_handling import ModelInvocationError


class ModelClient(Protocol):
    """Anything that turns a prompt into text."""

    model_name: str

    def generate(self, prompt: str, settings: GenerationSettings) -> str:
        ...


class GeminiModelClient:
    """ModelClient backed by the google-genai SDK."""

    def __init__(self, config: PipelineConfig, client: Optional[genai.Client] = None):
        """Initialize the Gemini client.

        Args:
            config: Pipeline configuration (API key, model name, timeout)
            client: Pre-built genai.Client, mainly for tests
        """
        self.model_name = config.model_name

        if client is None:
            if not config.api_key:
                raise ModelInvocationError("No API key configured for the Gemini client")
            client = genai.Client(
                api_key=config.api_key,
                http_options=types.HttpOptions(
                    timeout=int(config.request_timeout_seconds * 1000)
                ),
            )
        self.client = client

        logger.info(
            "Gemini model client initialized",
            model=self.model_name,
            timeout_seconds=config.request_timeout_seconds
        )

    def generate(self, prompt: str, settings: GenerationSettings) -> str:
        """Send one prompt and return the response text.

        Raises:
            ModelInvocationError: If the call fails, times out or returns no text
        """
        logger.debug(
            "Calling Gemini",
            model=self.model_name,
            prompt_length=len(prompt),
            temperature=settings.temperature
        )

        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=prompt,
                config=types.GenerateContentConfig(
                    temperature=settings.temperature,
                    top_p=settings.top_p,
                    top_k=settings.top_k,
                    max_output_tokens=settings.max_output_tokens
                )
            )
        except Exception as e:
            logger.error("Gemini call failed", error_type=type(e).__name__, error=str(e))
            raise ModelInvocationError(f"Model call failed: {e}", cause=e) from e

        text = response.text if response is not None else None
        if not text or not text.strip():
            raise ModelInvocationError("Model returned an empty response")

        logger.debug("Received Gemini response", response_length=len(text))
        return text
