"""
Pydantic Models and Schemas
===========================

Wire models shared by both sides of the render boundary, plus the result
types engines hand back to their callers.
"""

from typing import Optional, Dict, Any, Union
from datetime import datetime, timezone
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# Enums
class StreamOutcome(str, Enum):
    """Terminal result of a streaming render attempt."""

    COMPLETED = "completed"  # every byte relayed, remote side finished
    NOT_STARTED = "not_started"  # failed before the first byte was relayed
    ABORTED = "aborted"  # failed after at least one byte was relayed
    UNSUPPORTED = "unsupported"  # engine cannot stream


class EngineKind(str, Enum):
    """Configured render engine."""

    STREAMING = "streaming"
    PROCESS_POOL = "process-pool"


# Request Models
class RenderRequest(BaseModel):
    """Non-streaming render request: ``{url, props}``."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(default="", description="URL of the page to render")
    props: Dict[str, Any] = Field(default_factory=dict, description="Serializable props")


class StreamRenderRequest(RenderRequest):
    """Streaming render request: ``{url, props, template}``."""

    template: str = Field(default="", description="HTML template carrying the sentinel markers")


# Result Models
class RenderResult(BaseModel):
    """Rendered output of a non-streaming call."""

    model_config = ConfigDict(populate_by_name=True)

    head: Optional[str] = Field(default=None, description="HTML injected at the head marker")
    body: str = Field(
        ...,
        validation_alias=AliasChoices("body", "body_html"),
        description="HTML injected at the body marker",
    )
    body_attrs: Optional[Union[str, Dict[str, Any]]] = Field(
        default=None,
        validation_alias=AliasChoices("bodyAttrs", "body_attrs"),
        serialization_alias="bodyAttrs",
        description="Attributes for the <body> element",
    )

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys used on the wire."""
        return {"head": self.head or "", "body": self.body, "bodyAttrs": self.body_attrs or ""}


# Response Models
class HealthResponse(BaseModel):
    """Rendering service health payload."""

    status: str = "OK"
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Error code")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    request_id: Optional[str] = Field(None, description="Request ID for tracking")
