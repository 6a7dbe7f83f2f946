"""Subtitle and transcript server for video URLs, exposed over MCP and REST."""

__version__ = "0.3.0"
