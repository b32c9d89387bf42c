"""MCP server exposing the PDF filler to agents: extract, list fields, validate.

Uses the mcp Python SDK. stdio by default so a CLI agent can launch it
directly; set MCP_TRANSPORT=streamable-http to serve it over HTTP.
"""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from filler_mcp import tools
from filler_mcp.config import MCP_HOST, MCP_PORT, MCP_TRANSPORT

mcp = FastMCP(
    name="pdf-filler",
    instructions=(
        "Read and check PDF forms on the local machine. "
        "Use list_fields to see a form's fillable fields, extract_pdf to read the "
        "values filled into a PDF, and validate_pdf to find missing fields."
    ),
    host=MCP_HOST,
    port=MCP_PORT,
)


@mcp.tool()
async def extract_pdf(
    file_path: str, template: dict[str, Any] | None = None, force_refresh: bool = False
) -> str:
    """Extract the filled-in values of a PDF.

    Args:
        file_path: Absolute path to the PDF on this machine.
        template: Optional JSON object whose keys guide the output shape.
        force_refresh: Ignore a previously cached extraction.
    """
    return await tools.extract_pdf(file_path, template, force_refresh)


@mcp.tool()
async def list_fields(file_path: str, password: str | None = None) -> str:
    """List the fillable form fields of a PDF with their types and current values.

    Args:
        file_path: Absolute path to the PDF on this machine.
        password: Password for encrypted PDFs.
    """
    return await tools.list_fields(file_path, password)


@mcp.tool()
async def validate_pdf(file_path: str, required_fields: list[str] | None = None) -> str:
    """Check which fields of a PDF form are filled and which are missing.

    Args:
        file_path: Absolute path to the PDF on this machine.
        required_fields: Field names that must be filled (default: all fields).
    """
    return await tools.validate_pdf(file_path, required_fields)


def main() -> None:
    """Run the MCP server."""
    mcp.run(transport=MCP_TRANSPORT)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
