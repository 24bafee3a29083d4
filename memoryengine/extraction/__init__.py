"""Extraction of update candidates from conversation text (keyword gate + LLM)."""
