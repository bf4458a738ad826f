"""MCP bridge that runs interactive coding CLIs as supervised background tasks."""

__version__ = "0.1.0"

__all__ = ["__version__"]
