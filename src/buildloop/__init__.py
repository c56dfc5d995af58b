"""buildloop - adaptive build loop for AI coding agents."""

__version__ = "0.4.0"
