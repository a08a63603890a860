"""Middleware for error handling."""
import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from autoplay_audit.errors import AuditError, ErrorCode


logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Convert AuditError exceptions to error responses."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except AuditError as e:
            return e.to_response()
        except Exception as e:
            logger.exception("Unhandled error on %s", request.url.path)
            error = AuditError(str(e), code=ErrorCode.INTERNAL_ERROR)
            return error.to_response()
