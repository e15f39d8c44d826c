"""Convert a directory into LLM-friendly text documents that fit a token budget."""

__version__ = "0.3.0"
