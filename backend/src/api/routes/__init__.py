"""HTTP API route handlers."""

from . import chat

__all__ = ["chat"]
