"""
Marker Protocol
===============

Sentinel tokens used to split and merge an HTML template into head, body and
tail segments. Both sides of the render boundary import these constants; a
mismatch is not detectable at runtime.

Splitting always honours the first occurrence of a marker only. Any later
literal marker text is passed through unchanged.
"""

import html
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from universal_renderer.config.logging import get_logger
from universal_renderer.models.schemas import RenderResult

logger = get_logger(__name__)

HEAD_MARKER = "<!-- SSR_HEAD -->"
BODY_MARKER = "<!-- SSR_BODY -->"


class TemplateError(ValueError):
    """Exception raised when a template cannot be used for rendering."""

    pass


class MissingMarkerError(TemplateError):
    """Exception raised when a required sentinel marker is absent."""

    def __init__(self, marker: str):
        self.marker = marker
        super().__init__(f"Template missing {marker} marker")


@dataclass(frozen=True)
class TemplateSegments:
    """A template split once on the body marker."""

    before_body: str
    after_body: str

    def join(self, marker: str = BODY_MARKER) -> str:
        return f"{self.before_body}{marker}{self.after_body}"


@dataclass(frozen=True)
class StreamSegments:
    """
    A template split at its commit point.

    ``initial`` is written to the client before the remote stream is attached.
    ``remainder`` starts at the first splice marker and is what the rendering
    service receives as its template, or what the host writes unmodified when
    the stream never starts.
    """

    initial: str
    remainder: str


def split(template: str, marker: str = BODY_MARKER) -> TemplateSegments:
    """
    Split a template on the first occurrence of ``marker``.

    Raises:
        MissingMarkerError: If the marker does not occur in the template
    """
    before, found, after = template.partition(marker)
    if not found:
        raise MissingMarkerError(marker)
    return TemplateSegments(before_body=before, after_body=after)


def inject_head(segment: str, head_content: Optional[str], marker: str = HEAD_MARKER) -> str:
    """
    Replace the first head marker in ``segment`` with ``head_content``.

    A missing marker only disables injection; the segment is returned as is.
    """
    if not head_content:
        return segment
    if marker not in segment:
        logger.warning(
            "Template is missing head marker, head content will not be injected",
            marker=marker,
        )
        return segment
    return segment.replace(marker, head_content, 1)


def validate_stream_template(template: str) -> None:
    """
    Validate a template for streaming.

    Raises:
        TemplateError: If the template is empty
        MissingMarkerError: If the body marker is absent
    """
    if not template:
        raise TemplateError("Template is required")
    if BODY_MARKER not in template:
        raise MissingMarkerError(BODY_MARKER)
    if HEAD_MARKER not in template:
        logger.warning(
            "Template is missing head marker, head content will not be injected",
            marker=HEAD_MARKER,
        )


def split_for_stream(template: str) -> StreamSegments:
    """
    Split a template at its streaming commit point.

    The commit point is the head marker when it precedes the body marker,
    otherwise the body marker.
    """
    validate_stream_template(template)
    body_index = template.index(BODY_MARKER)
    head_index = template.find(HEAD_MARKER)
    cut = head_index if 0 <= head_index < body_index else body_index
    return StreamSegments(initial=template[:cut], remainder=template[cut:])


def render_body_attrs(body_attrs: Union[str, Mapping[str, Any], None]) -> str:
    """Render body attributes given as a raw string or a mapping."""
    if not body_attrs:
        return ""
    if isinstance(body_attrs, str):
        return body_attrs.strip()

    parts = []
    for name, value in body_attrs.items():
        if value is None or value is False:
            continue
        if value is True:
            parts.append(html.escape(str(name)))
        else:
            parts.append(f'{html.escape(str(name))}="{html.escape(str(value), quote=True)}"')
    return " ".join(parts)


def inject_body_attrs(segment: str, body_attrs: Union[str, Mapping[str, Any], None]) -> str:
    """Append attributes to the first ``<body`` tag in ``segment``."""
    attrs = render_body_attrs(body_attrs)
    if not attrs:
        return segment

    lowered = segment.lower()
    start = lowered.find("<body")
    if start == -1:
        return segment
    end = segment.find(">", start)
    if end == -1:
        return segment
    return f"{segment[:end]} {attrs}{segment[end:]}"


def compose_document(template: str, result: Optional[RenderResult]) -> str:
    """
    Compose a buffered document from a template and a render result.

    Without a result the template is returned untouched, which leaves the
    client-side rendering fallback markup it already contains.
    """
    if result is None:
        return template

    before, found, after = template.partition(BODY_MARKER)
    if not found:
        logger.warning("Template is missing body marker, body content dropped", marker=BODY_MARKER)
        return inject_head(template, result.head)

    before = inject_body_attrs(inject_head(before, result.head), result.body_attrs)
    return f"{before}{result.body}{after}"
