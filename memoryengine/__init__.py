"""Writable memory engine: per-scope semantic knowledge with conflict-aware updates."""
