"""Multi-provider LLM dispatch with serialized queuing, retry and fallback."""

__version__ = "0.1.0"
