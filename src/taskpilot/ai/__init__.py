"""Model access, tool orchestration and task planning."""

from .client import AIClient, ClientSettings

__all__ = ["AIClient", "ClientSettings"]
