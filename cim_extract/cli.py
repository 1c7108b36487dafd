"""
cim-extract command line.

    cim-extract analyze cim.pdf [--pages p1.jpg p2.jpg ...]
    cim-extract payload p1.jpg p2.jpg ...
    cim-extract breakers

Result JSON goes to stdout, logs to stderr and logs/cim_extract/system.log.
"""

import argparse
import asyncio
import base64
import json
import sys
from pathlib import Path
from typing import List, Optional

from cim_extract.core.config import get_settings
from cim_extract.core.exceptions import ValidationError
from cim_extract.core.logging_config import setup_logging
from cim_extract.core.models import ExtractionRequest
from cim_extract.orchestration.factory import build_orchestrator
from cim_extract.payload.optimizer import PayloadSizeOptimizer
from cim_extract.resilience.circuit_breaker import BreakerRegistry


def _encode(path: Path) -> str:
    return base64.b64encode(path.read_bytes()).decode("ascii")


async def _analyze(document: Optional[Path], pages: List[Path]) -> int:
    settings = get_settings()
    request = ExtractionRequest(
        images=[_encode(p) for p in pages] or None,
        file_bytes=_encode(document) if document else None,
        file_name=document.name if document else (pages[0].name if pages else "document"),
    )

    orchestrator = build_orchestrator(settings)
    try:
        result = await orchestrator.run(request)
    except ValidationError as e:
        print(json.dumps({"success": False, "error": {"message": e.message, "attempts": []}}, indent=2))
        return 2
    finally:
        await orchestrator.aclose()

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def _payload(pages: List[Path]) -> int:
    settings = get_settings()
    optimizer = PayloadSizeOptimizer(
        target_size_bytes=settings.payload.target_size_bytes,
        max_pages=settings.payload.max_pages,
        warning_limit_bytes=settings.payload.warning_limit_bytes,
        hard_limit_bytes=settings.payload.hard_limit_bytes,
    )
    images = [_encode(p) for p in pages]
    print(json.dumps({
        "payload": optimizer.get_payload_info(images).to_dict(),
        "recommendations": optimizer.get_recommendations(images),
    }, indent=2))
    return 0


def _breakers() -> int:
    registry = BreakerRegistry.from_settings(get_settings())
    print(json.dumps(registry.status(), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="cim-extract", description="Financial data extraction from CIM documents")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Extract financial data from a document")
    analyze.add_argument("document", type=Path, nargs="?", help="Raw document (PDF)")
    analyze.add_argument("--pages", type=Path, nargs="+", default=[], help="Page images in order")

    payload = subparsers.add_parser("payload", help="Show payload size and optimization advice")
    payload.add_argument("pages", type=Path, nargs="+", help="Page images in order")

    subparsers.add_parser("breakers", help="Show configured circuit breakers")

    args = parser.parse_args(argv)
    setup_logging(level=args.log_level or get_settings().log_level, service_name="cim_extract_cli")

    if args.command == "analyze":
        if args.document is None and not args.pages:
            parser.error("analyze needs a document and/or --pages")
        return asyncio.run(_analyze(args.document, args.pages))
    if args.command == "payload":
        return _payload(args.pages)
    return _breakers()


if __name__ == "__main__":
    sys.exit(main())
