"""tierstream -- multi-tier LLM streaming fallback and multi-model debate."""

__version__ = "0.1.0"
