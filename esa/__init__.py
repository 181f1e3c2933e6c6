"""Building blocks for a command-line LLM agent: tools, MCP servers, redaction, telemetry and history files."""

__version__ = "0.1.0"