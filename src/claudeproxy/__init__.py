"""OpenAI-compatible chat completions served by the Claude Code CLI."""

__version__ = "0.1.0"

__all__ = ["__version__"]
