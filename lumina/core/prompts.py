"""Prompt registry for calls to the external AI service.

Central place for every prompt template the ingestion pipeline and the reader
send out. Templates use `str.format` placeholders listed in `variables`.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PromptTemplate:
    """A prompt template with metadata."""

    key: str
    category: str
    name: str
    description: str
    template: str
    variables: list[str]


DEFAULT_PROMPTS: dict[str, dict] = {
    "grounded_search": {
        "category": "discover",
        "name": "Grounded search",
        "description": "Finds books, news or articles for a query using web search grounding.",
        "template": """Find detailed information about books, news, or articles related to: "{query}".
Provide a comprehensive summary of the top findings.
If it's a book, include author and plot summary.
If it's news, include the latest updates.""",
        "variables": ["query"],
    },
    "extract_item": {
        "category": "discover",
        "name": "Structured item extraction",
        "description": "Turns raw search text into library metadata plus readable markdown content.",
        "template": """Analyze the following text and extract/generate metadata for a reading library item.

Text: {raw_text}...

Return ONLY a JSON object with these keys:
- title: A suitable title
- author: The author or source name
- description: A short 2-sentence description
- content: The full text formatted nicely in Markdown. If the input was short, expand it slightly to be readable (approx 300-500 words) so it looks like a proper article/chapter.""",
        "variables": ["raw_text"],
    },
    "cover_image": {
        "category": "discover",
        "name": "Cover art",
        "description": "Image prompt for the optional AI-generated cover.",
        "template": (
            'A high quality, artistic, digital art cover image for an article titled "{title}". '
            "Context: {description}. Minimalist, modern, clean style, cinematic lighting, 4k resolution."
        ),
        "variables": ["title", "description"],
    },
    "explain_selection": {
        "category": "reader",
        "name": "Explain selection",
        "description": "Short explanation of a passage the reader selected.",
        "template": """Context: User is reading an article. Opening of the article:
{context}

Selected Text: "{text}"

Task: Briefly explain this text or define difficult terms within it. Keep it concise (under 100 words).""",
        "variables": ["text", "context"],
    },
}


def get_default_prompt(key: str) -> PromptTemplate | None:
    """Get a default prompt template by key."""
    if key not in DEFAULT_PROMPTS:
        return None

    data = DEFAULT_PROMPTS[key]
    return PromptTemplate(
        key=key,
        category=data["category"],
        name=data["name"],
        description=data["description"],
        template=data["template"],
        variables=data["variables"],
    )


def render_prompt(key: str, **values: object) -> str:
    """Fill the template `key` with `values`.

    Raises:
        KeyError: If the prompt or one of its variables is unknown/missing.
    """
    prompt = get_default_prompt(key)
    if prompt is None:
        raise KeyError(f"Unknown prompt: {key}")
    missing = [v for v in prompt.variables if v not in values]
    if missing:
        raise KeyError(f"Missing prompt variables for {key}: {missing}")
    return prompt.template.format(**values)
