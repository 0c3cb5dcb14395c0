"""Response envelope and RFC 7807 error bodies for the v1 API."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import Request

from grantguard.schemas.common import ApiResponse, ErrorDetail, ResponseMeta


def _request_id(request: Optional[Request]) -> str:
    # Set by the correlation-id middleware; absent outside a request
    if request is not None and hasattr(request.state, "request_id"):
        return request.state.request_id
    return str(uuid4())


def _as_payload(data: Any) -> Dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, dict):
        return data
    if hasattr(data, "model_dump"):
        return data.model_dump(mode="json")
    if isinstance(data, (list, tuple)):
        return {"items": [_as_payload(item) if hasattr(item, "model_dump") else item for item in data]}
    return {"value": data}


def create_api_response(
    data: Any,
    message: str = "Operation successful",
    status: bool = True,
    request: Optional[Request] = None,
    api_version: str = "v1"
) -> Dict[str, Any]:
    """Wrap a payload in the ``{status, message, data, meta}`` envelope.

    Args:
        data: A pydantic model, a dict, a list (returned as ``{"items": [...]}``)
            or a scalar (returned as ``{"value": ...}``)
        message: Human readable summary, e.g. the export decision
        status: False only for soft failures reported with HTTP 200
        request: Current request, used for the correlation id
        api_version: Version tag echoed in ``meta``

    Returns:
        JSON-ready dict
    """
    envelope = ApiResponse(
        status=status,
        message=message,
        data=_as_payload(data),
        meta=ResponseMeta(
            timestamp=datetime.now(timezone.utc),
            request_id=_request_id(request),
            api_version=api_version,
        ),
    )
    return envelope.model_dump(mode="json")


def create_error_detail(
    title: str,
    status: int,
    detail: str,
    request: Optional[Request] = None,
    instance: Optional[str] = None
) -> ErrorDetail:
    if instance is None and request is not None:
        instance = request.url.path
    return ErrorDetail(
        title=title,
        status=status,
        detail=detail,
        instance=instance,
        request_id=_request_id(request),
        timestamp=datetime.now(timezone.utc),
    )
