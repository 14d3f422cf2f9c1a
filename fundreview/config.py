"""Pipeline configuration.

Generation parameters and size limits live in an explicitly constructed
PipelineConfig that is handed to every stage, instead of module-level
client state. ``PipelineConfig.from_env()`` reads the same environment
variables the entrypoints load from ``.env``.
"""

import os
from typing import Optional
from msgspec import Struct, field


DEFAULT_MODEL_NAME = "gemini-2.5-flash"


class GenerationSettings(Struct, frozen=True):
    """Sampling parameters for one model call."""
    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int = 8192


class PipelineConfig(Struct, kw_only=True):
    """Everything a stage needs besides its inputs and the model client."""
    api_key: Optional[str] = None
    model_name: str = DEFAULT_MODEL_NAME
    request_timeout_seconds: float = 120.0

    # Classification is a categorical decision, so variance is kept low.
    classification: GenerationSettings = field(
        default_factory=lambda: GenerationSettings(temperature=0.3)
    )
    analysis: GenerationSettings = field(default_factory=GenerationSettings)
    chat: GenerationSettings = field(default_factory=GenerationSettings)

    preview_max_chars: int = 5000
    analysis_document_limit: int = 100_000
    chat_target_limit: int = 50_000
    chat_reference_limit: int = 30_000
    chat_history_turns: int = 10
    session_ttl_minutes: int = 30

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build a configuration from environment variables."""
        return cls(
            api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            model_name=os.getenv("GEMINI_MODEL", DEFAULT_MODEL_NAME),
            request_timeout_seconds=float(os.getenv("MODEL_TIMEOUT_SECONDS", "120")),
            chat_history_turns=int(os.getenv("CHAT_HISTORY_TURNS", "10")),
            session_ttl_minutes=int(os.getenv("SESSION_TTL_MINUTES", "30")),
        )
