"""Text generation collaborator.

The backend is chosen once at startup: Anthropic when an API key is
configured, otherwise a deterministic fallback that returns an empty JSON
object so callers take their own fallback path.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import anthropic

from src.config import Settings
from src.errors import UpstreamError

logger = logging.getLogger("kalori.services.text_generation")


class TextGenerator(ABC):
    #: Identifier reported alongside generated content.
    name: str = "unknown"

    @abstractmethod
    async def generate_text(self, prompt: str, max_tokens: int = 1024) -> str:
        """Return the completion for ``prompt``.

        Raises:
            UpstreamError: The backend failed.
        """


class AnthropicTextGenerator(TextGenerator):
    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self._model = model
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def generate_text(self, prompt: str, max_tokens: int = 1024) -> str:
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as exc:
            raise UpstreamError(f"Text generation failed: {exc}") from exc

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return text.strip()


class FallbackTextGenerator(TextGenerator):
    """Offline generator.  Always returns ``{}``."""

    name = "fallback"

    async def generate_text(self, prompt: str, max_tokens: int = 1024) -> str:
        return "{}"


def build_text_generator(settings: Settings) -> TextGenerator:
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY not set — using fallback text generator")
        return FallbackTextGenerator()
    logger.info("Text generation via Anthropic model %s", settings.anthropic_model)
    return AnthropicTextGenerator(settings.anthropic_api_key, settings.anthropic_model)
