"""Language-model helpers for crate planning."""

from cratecat.llm.gemini import GeminiLLM, LanguageModel, execute_with_deadline
from cratecat.llm.parsers import extract_json, parse_or_fallback, sanitize_track_ids

__all__ = [
    "GeminiLLM",
    "LanguageModel",
    "execute_with_deadline",
    "extract_json",
    "parse_or_fallback",
    "sanitize_track_ids",
]
