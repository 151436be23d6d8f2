"""
Request id middleware.

Every request gets an id (the caller's X-Request-ID, or a new
req_<base36 ms>_<random>) stored on request.state.request_id, included in
error bodies and echoed in the X-Request-ID response header.
"""
import logging

from fastapi import Request

from bhavan.core.errors import generate_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def get_request_id(request: Request) -> str:
    """Request id for error responses; generated if the middleware did not run."""
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = generate_request_id()
        request.state.request_id = request_id
    return request_id
