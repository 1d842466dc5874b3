from __future__ import annotations

import uuid
from typing import Any, Dict, Generic, Optional, TypeVar

from flask import g, has_request_context, request
from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")

REQUEST_ID_HEADER = "X-Request-ID"


class ApiError(BaseModel):
    """Standard error payload for API responses."""

    code: str = Field(default="error")
    message: str
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="ignore")


class ApiMeta(BaseModel):
    """Metadata attached to every response."""

    request_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class ApiResponse(BaseModel, Generic[T]):
    """Standard envelope for all API responses."""

    ok: bool
    data: Optional[T] = None
    error: Optional[ApiError] = None
    meta: ApiMeta = Field(default_factory=ApiMeta)

    model_config = ConfigDict(extra="ignore")


def current_request_id() -> Optional[str]:
    """Return the id of the current request (client-supplied or generated).

    The id is generated once per request and kept on `flask.g`.
    """

    if not has_request_context():
        return None
    rid = getattr(g, "request_id", None)
    if rid is None:
        rid = (request.headers.get(REQUEST_ID_HEADER) or "").strip() or uuid.uuid4().hex
        g.request_id = rid
    return rid


def _meta(meta: Optional[ApiMeta]) -> ApiMeta:
    return meta or ApiMeta(request_id=current_request_id())


def ok(data: Any = None, *, meta: Optional[ApiMeta] = None) -> Dict[str, Any]:
    """Create a success envelope as a JSON-serializable dict."""

    payload = ApiResponse[Any](ok=True, data=data, error=None, meta=_meta(meta))
    return payload.model_dump(mode="json")


def fail(
    message: str,
    *,
    code: str = "error",
    details: Optional[Dict[str, Any]] = None,
    meta: Optional[ApiMeta] = None,
) -> Dict[str, Any]:
    """Create an error envelope as a JSON-serializable dict."""

    payload = ApiResponse[None](
        ok=False,
        data=None,
        error=ApiError(code=code, message=message, details=details),
        meta=_meta(meta),
    )
    return payload.model_dump(mode="json")
