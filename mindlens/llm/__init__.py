"""
llm — Keyword-to-phrase generation.

Gemini REST generator with a deterministic template fallback.
"""
