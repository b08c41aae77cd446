"""
Token counting and source-text truncation for prompts, using tiktoken.
"""

from typing import Optional
import tiktoken

from teachback.shared.config import settings


def get_encoding(model: Optional[str] = None) -> tiktoken.Encoding:
    """Get tiktoken encoding for a model, falling back to cl100k_base."""
    model = model or settings.llm.default_model

    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str, model: Optional[str] = None) -> int:
    """Count tokens in text."""
    return len(get_encoding(model).encode(text))


def truncate_to_tokens(
    text: str,
    max_tokens: int,
    model: Optional[str] = None,
    suffix: str = "..."
) -> str:
    """
    Truncate text to at most max_tokens tokens.

    The suffix is appended only when truncation happened and counts
    against the budget.
    """
    encoding = get_encoding(model)
    tokens = encoding.encode(text)

    if len(tokens) <= max_tokens:
        return text

    suffix_tokens = len(encoding.encode(suffix)) if suffix else 0
    if max_tokens <= suffix_tokens:
        return suffix

    return encoding.decode(tokens[:max_tokens - suffix_tokens]) + suffix
