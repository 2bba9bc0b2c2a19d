"""Tiered conversational memory: short-term windows, semantic facts and episodic summaries."""

__version__ = "1.0.0"
