"""
Render Routes
=============

Non-streaming render endpoints: ``POST /`` and ``POST /static`` take
``{url, props}`` and answer ``{head, body, bodyAttrs}``.
"""

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from universal_renderer.config.logging import get_logger
from universal_renderer.models.schemas import RenderRequest
from universal_renderer.service.handlers import RenderHandlers, RenderServiceError, render_once

logger = get_logger(__name__)

router = APIRouter(tags=["Rendering"])


def get_handlers(request: Request) -> RenderHandlers:
    """Dependency returning the application's render callbacks."""
    return request.app.state.handlers


async def read_json_body(request: Request) -> Optional[Dict[str, Any]]:
    """Parse the request body as a JSON object; None when it is not one."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@router.post("/")
@router.post("/static")
async def render_static(
    request: Request, handlers: RenderHandlers = Depends(get_handlers)
) -> JSONResponse:
    """Render a page in one piece."""
    body = await read_json_body(request)
    if body is None:
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

    try:
        payload = RenderRequest.model_validate(body)
    except ValidationError as e:
        return JSONResponse(
            {"error": f"Invalid render request: {e.error_count()} validation error(s)"},
            status_code=400,
        )

    if not payload.url:
        return JSONResponse({"error": "URL is required"}, status_code=400)

    logger.info("Render requested", url=payload.url, props_keys=list(payload.props))
    try:
        result = await render_once(handlers, payload.url, dict(payload.props))
    except Exception as e:
        raise RenderServiceError(str(e) or type(e).__name__, url=payload.url) from e

    return JSONResponse(result.to_wire())
