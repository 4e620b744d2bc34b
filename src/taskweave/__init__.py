"""Taskweave - agent execution runtime."""

__version__ = "0.1.0"
