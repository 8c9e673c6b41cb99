"""Chat proxy exposing an OpenAI-compatible interface atop the Claude CLI.

Each request spawns one CLI subprocess; text-only requests pass the prompt as
an argument, requests carrying images are piped as stream-json on stdin.
"""

__all__ = []
