"""
Stream Routes
=============

``POST /stream`` takes ``{url, props, template}`` and answers a chunked HTML
document: the head segment with head tags injected, the body as it renders,
then the tail. Validation failures are short plain-text 400s.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from pydantic import ValidationError

from universal_renderer.config.logging import get_logger
from universal_renderer.core.markers import TemplateError, validate_stream_template
from universal_renderer.models.schemas import StreamRenderRequest
from universal_renderer.service.handlers import RenderHandlers, RenderServiceError, open_stream
from .render import get_handlers, read_json_body

logger = get_logger(__name__)

router = APIRouter(tags=["Streaming"])


@router.post("/stream")
async def render_stream(
    request: Request, handlers: RenderHandlers = Depends(get_handlers)
) -> Response:
    """Stream a rendered page into the supplied template."""
    if not handlers.supports_streaming:
        return PlainTextResponse("Streaming is not supported", status_code=501)

    body = await read_json_body(request)
    if body is None:
        return PlainTextResponse("Invalid JSON body", status_code=400)

    try:
        payload = StreamRenderRequest.model_validate(body)
    except ValidationError as e:
        return PlainTextResponse(
            f"Invalid render request: {e.error_count()} validation error(s)", status_code=400
        )

    if not payload.url:
        return PlainTextResponse("URL is required", status_code=400)

    try:
        validate_stream_template(payload.template)
    except TemplateError as e:
        return PlainTextResponse(str(e), status_code=400)

    logger.info("Stream render requested", url=payload.url, props_keys=list(payload.props))
    try:
        chunks = await open_stream(handlers, payload.url, dict(payload.props), payload.template)
    except Exception as e:
        raise RenderServiceError(str(e) or type(e).__name__, url=payload.url) from e

    return StreamingResponse(chunks, media_type="text/html; charset=utf-8")
