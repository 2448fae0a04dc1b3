"""
Cached HTTP response envelope.
"""

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from starlette.responses import JSONResponse, Response


class CachedResponse(BaseModel):
    """
    Status code, decoded JSON body and content type of a cached API response.

    ``media_type`` is None only for responses without a body, so a JSON
    ``null`` body (``body=None`` with a media type) stays distinct from an
    empty one.
    """

    status: int = Field(ge=100, le=599)
    body: Optional[Any] = None
    media_type: Optional[str] = None

    @property
    def has_body(self) -> bool:
        return self.media_type is not None

    @classmethod
    def from_http(cls, status: int, content: bytes, media_type: Optional[str]) -> Optional["CachedResponse"]:
        """Build an envelope from raw response bytes; None when the body is not JSON."""
        if not content:
            return cls(status=status)

        if not is_json_media_type(media_type):
            return None

        try:
            return cls(status=status, body=json.loads(content), media_type=media_type)
        except ValueError:
            return None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CachedResponse":
        """Rebuild from the JSON-decoded cache value."""
        return cls.model_validate(payload)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe form stored in the cache."""
        return self.model_dump()

    def to_response(self, headers: Optional[Dict[str, str]] = None) -> Response:
        """Render the envelope as an HTTP response with the origin content type."""
        if not self.has_body:
            return Response(status_code=self.status, headers=headers)
        return JSONResponse(content=self.body, status_code=self.status, headers=headers, media_type=self.media_type)


def is_json_media_type(media_type: Optional[str]) -> bool:
    """True for application/json and +json content types."""
    if not media_type:
        return False
    base = media_type.split(";", 1)[0].strip().lower()
    return base == "application/json" or base.endswith("+json")
