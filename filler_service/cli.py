from __future__ import annotations

import argparse

from filler_service.config import FILLER_HOST, FILLER_LOG_LEVEL, FILLER_PORT


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pdf-filler",
        description="Extract, validate and fill PDF forms through locally installed AI CLIs",
    )
    p.add_argument("--log-level", default=FILLER_LOG_LEVEL, help="Python logging level (INFO, DEBUG, ...)")
    sub = p.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=FILLER_HOST, help="Bind address (default from FILLER_HOST)")
    serve.add_argument("--port", type=int, default=FILLER_PORT, help="Port (default from FILLER_PORT)")

    extract = sub.add_parser("extract", help="Extract filled values from one PDF and print JSON")
    extract.add_argument("path", help="Path to the PDF")
    extract.add_argument("--template", default=None, help="JSON object used as a shape guide")
    extract.add_argument("--force", action="store_true", help="Ignore any cached result")

    sub.add_parser("status", help="Show which backends are installed and authenticated")
    return p
