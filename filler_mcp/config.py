"""Configuration for the MCP server."""

from __future__ import annotations

import os

FILLER_SERVICE_URL: str = os.getenv("FILLER_SERVICE_URL", "http://127.0.0.1:3456")
MCP_HOST: str = os.getenv("MCP_HOST", "127.0.0.1")
MCP_PORT: int = int(os.getenv("MCP_PORT", "3457"))
# Extraction waits on a backend CLI; keep this above FILLER_INVOKE_TIMEOUT_S.
MCP_REQUEST_TIMEOUT_S: float = float(os.getenv("MCP_REQUEST_TIMEOUT_S", "400"))
MCP_TRANSPORT: str = os.getenv("MCP_TRANSPORT", "stdio")
