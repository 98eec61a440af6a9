"""Integration layer: wire models for external services."""
