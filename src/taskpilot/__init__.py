"""taskpilot: goal planning and tool orchestration for coding assistants."""

__all__ = ["__version__"]

__version__ = "0.1.0"
