"""
Command Line Interface
======================

``universal-renderer serve --app module:attr`` runs the HTTP rendering service;
``universal-renderer worker --app module:attr`` runs the stdio worker loop that
the host's process pool spawns. ``attr`` names a :class:`RenderHandlers`
instance or a zero-argument callable returning one.
"""

import argparse
import asyncio
import importlib
import sys
from typing import List, Optional

from universal_renderer import __version__
from universal_renderer.config.logging import get_logger, setup_logging
from universal_renderer.config.settings import get_settings
from universal_renderer.service.handlers import RenderHandlers
from universal_renderer.service.stdio import serve_stdio

logger = get_logger(__name__)


def load_handlers(target: str) -> RenderHandlers:
    """Import ``module:attr`` and resolve it to render handlers."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected 'module:attr', got {target!r}")

    module = importlib.import_module(module_name)
    obj = module
    for part in attr.split("."):
        obj = getattr(obj, part)

    if not isinstance(obj, RenderHandlers) and callable(obj):
        obj = obj()
    if not isinstance(obj, RenderHandlers):
        raise TypeError(f"{target} did not resolve to RenderHandlers, got {type(obj).__name__}")
    return obj


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="universal-renderer", description="Server-side rendering bridge"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP rendering service")
    serve.add_argument("--app", required=True, help="Render handlers as module:attr")
    serve.add_argument("--host", help="Bind host (default: settings)")
    serve.add_argument("--port", type=int, help="Bind port (default: settings)")

    worker = subparsers.add_parser("worker", help="Run a stdio render worker")
    worker.add_argument("--app", required=True, help="Render handlers as module:attr")

    return parser


def run_worker(handlers: RenderHandlers) -> int:
    """Serve stdio requests until EOF."""
    asyncio.run(serve_stdio(handlers))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "worker":
        # stdout carries the render protocol
        setup_logging(get_settings(), stream=sys.stderr)
        return run_worker(load_handlers(args.app))

    from universal_renderer.api.main import run_server

    settings = get_settings()
    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if overrides:
        settings = settings.model_copy(update=overrides)

    setup_logging(settings)
    handlers = load_handlers(args.app)
    logger.info("Serving render handlers", app=args.app, host=settings.host, port=settings.port)
    run_server(handlers, settings)
    return 0


if __name__ == "__main__":
    sys.exit(main())
