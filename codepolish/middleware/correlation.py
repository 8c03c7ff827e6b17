"""Request correlation IDs.

Every request gets an X-Request-ID (echoed when the client supplies a sane one)
that the structlog processor attaches to each log event and the exception
handlers attach to error responses.
"""

import re
import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

REQUEST_ID_HEADER = "X-Request-ID"

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _is_valid_request_id(value: str) -> bool:
    return bool(_REQUEST_ID_RE.match(value))


def setup_correlation_middleware(app: FastAPI) -> None:
    """Add the correlation ID middleware.

    Client-supplied IDs that are too long or contain unexpected characters are
    replaced with a fresh UUID so they cannot inject into log lines.
    """
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name=REQUEST_ID_HEADER,
        generator=lambda: str(uuid.uuid4()),
        validator=_is_valid_request_id,
        update_request_header=True,
    )


def get_correlation_id() -> str | None:
    """Current request's correlation ID, or None outside a request."""
    try:
        return correlation_id.get()
    except LookupError:
        return None


__all__ = ["REQUEST_ID_HEADER", "get_correlation_id", "setup_correlation_middleware"]
