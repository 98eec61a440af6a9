"""Application layer for the Agent CLI: agents, tools, settings and services."""
