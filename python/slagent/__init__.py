"""slagent - watches coding agents and records what happened in their sessions."""

__version__ = "0.1.0"
