from __future__ import annotations

import asyncio
import json
import logging
import sys

from filler_service.cli import build_parser
from filler_service.errors import OrchestrationError
from filler_service.logging_config import setup_logging
from filler_service.pipeline import build_orchestrator

logger = logging.getLogger("filler_service")


async def _extract(path: str, template_json: str | None, force: bool) -> int:
    template = None
    if template_json:
        try:
            template = json.loads(template_json)
        except json.JSONDecodeError as e:
            logger.error("--template is not valid JSON: %s", e)
            return 2
        if not isinstance(template, dict):
            logger.error("--template must be a JSON object")
            return 2

    orchestrator = build_orchestrator()
    try:
        result = await orchestrator.extract(path, template, force_refresh=force)
    except OrchestrationError as e:
        logger.error("Extraction failed [%s]: %s", e.code, e)
        return 1
    logger.info("Extracted via %s (%s)", result.provider, result.source)
    json.dump(result.document, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


async def _status() -> int:
    status = await build_orchestrator().status()
    json.dump(status, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    return 0 if status["authenticated"] else 3


def _serve(host: str, port: int, log_level: str) -> int:
    import uvicorn

    uvicorn.run("filler_service.app:app", host=host, port=port, log_level=log_level.lower())
    return 0


def main() -> None:
    args = build_parser().parse_args()
    setup_logging(level=args.log_level.upper())

    if args.command == "serve":
        raise SystemExit(_serve(args.host, args.port, args.log_level))
    if args.command == "extract":
        raise SystemExit(asyncio.run(_extract(args.path, args.template, args.force)))
    raise SystemExit(asyncio.run(_status()))


if __name__ == "__main__":
    main()
