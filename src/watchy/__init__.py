"""Supervise background shell tasks and reason about them with an LLM agent."""

__version__ = "0.2.0"
