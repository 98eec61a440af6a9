"""Terminal presentation layer for the Agent CLI."""

__version__ = "0.1.0"
