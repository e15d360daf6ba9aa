"""
Stdio Worker
============

Worker loop run by each process in the host's process pool. Reads one JSON
request per line from stdin and writes exactly one JSON response line per
request to stdout. Stdout is the protocol channel, so everything else (logs,
stray prints from application code) goes to stderr.
"""

import asyncio
import contextlib
import json
import sys
from typing import Any, Dict, Optional, TextIO

from pydantic import ValidationError

from universal_renderer.config.logging import get_logger
from universal_renderer.models.schemas import RenderRequest
from .handlers import RenderHandlers, render_once

logger = get_logger(__name__)


def error_payload(message: str) -> Dict[str, Any]:
    """Response line reporting a failed render."""
    return {"head": "", "body": "", "bodyAttrs": "", "error": message}


async def handle_line(handlers: RenderHandlers, line: str) -> Optional[Dict[str, Any]]:
    """
    Serve one request line.

    Returns:
        The response object, or None for a blank line
    """
    line = line.strip()
    if not line:
        return None

    try:
        payload = json.loads(line)
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON payload", error=str(e))
        return error_payload(f"Invalid JSON payload: {e}")

    try:
        request = RenderRequest.model_validate(payload)
    except ValidationError as e:
        logger.error("Invalid render request", error=str(e))
        return error_payload(f"Invalid render request: {e.error_count()} validation error(s)")

    if not request.url:
        return error_payload("URL is required")

    try:
        result = await render_once(handlers, request.url, dict(request.props))
    except Exception as e:
        logger.error("Render error", url=request.url, error=str(e), exc_info=True)
        return error_payload(str(e) or type(e).__name__)

    return result.to_wire()


async def serve_stdio(
    handlers: RenderHandlers, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None
) -> int:
    """
    Serve requests until stdin reaches EOF.

    Returns:
        Number of response lines written
    """
    protocol_in = stdin or sys.stdin
    protocol_out = stdout or sys.stdout
    loop = asyncio.get_running_loop()
    served = 0

    logger.info("Stdio worker ready")
    with contextlib.redirect_stdout(sys.stderr):
        while True:
            line = await loop.run_in_executor(None, protocol_in.readline)
            if not line:
                break

            response = await handle_line(handlers, line)
            if response is None:
                continue

            protocol_out.write(json.dumps(response) + "\n")
            protocol_out.flush()
            served += 1

    logger.info("Stdio worker input closed", served=served)
    return served
