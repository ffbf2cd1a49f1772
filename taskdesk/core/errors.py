"""
Error taxonomy and the FastAPI handlers that render it.

Every error response is a JSON object with at least a ``msg`` field.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TaskDeskError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_msg = "Server error"

    def __init__(self, msg: str | None = None):
        self.msg = msg or self.default_msg
        super().__init__(self.msg)

    def to_dict(self) -> dict:
        return {"msg": self.msg}


class ValidationError(TaskDeskError):
    """Malformed or missing input. Carries field-level detail."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_msg = "Validation failed"

    def __init__(self, msg: str | None = None, errors: list[dict] | None = None):
        super().__init__(msg)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, msg: str) -> "ValidationError":
        return cls(msg, errors=[{"field": field, "msg": msg}])

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        return cls(errors=_field_errors(exc.errors()))

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.errors:
            body["errors"] = self.errors
        return body


class AuthenticationError(TaskDeskError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_msg = "Token is not valid"


class AuthorizationError(TaskDeskError):
    status_code = status.HTTP_403_FORBIDDEN
    default_msg = "Access denied: Insufficient privileges."


class NotFoundError(TaskDeskError):
    status_code = status.HTTP_404_NOT_FOUND
    default_msg = "Not found"


class ConflictError(TaskDeskError):
    # Duplicate unique fields are reported as a plain bad request
    status_code = status.HTTP_400_BAD_REQUEST
    default_msg = "Already exists"


class RateLimitError(TaskDeskError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_msg = "Too many requests, please try again later"

    def to_dict(self) -> dict:
        return {"msg": self.msg, "code": self.status_code}


def _field_errors(raw_errors) -> list[dict]:
    errors = []
    for err in raw_errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or None, "msg": err.get("msg")})
    return errors


async def taskdesk_error_handler(request: Request, exc: TaskDeskError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"msg": "Validation failed", "errors": _field_errors(exc.errors())},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"msg": "Server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskDeskError, taskdesk_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
