"""Explanations for passages selected in the reader."""

from __future__ import annotations

import logging

from lumina.providers.gemini import AIService

logger = logging.getLogger(__name__)

APOLOGY_TEXT = "Sorry, I couldn't explain that right now."

# Characters of the item content sent along as context
CONTEXT_CHARS = 1000


async def explain_selection(service: AIService, text: str, content: str) -> str:
    """Ask the AI service to explain `text`. Never raises; failures yield APOLOGY_TEXT."""
    try:
        return await service.explain(text, content[:CONTEXT_CHARS])
    except Exception as e:
        logger.warning(f"Explanation failed: {e}")
        return APOLOGY_TEXT
