"""Game error taxonomy and the FastAPI handlers that render it.

Every failure leaves the API as ``{"error": <message>, "code": <CODE>}``.
Benign uniqueness races are not errors; see ``store.InsertOutcome``.
"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class GameError(HTTPException):
    """Base class for failures a handler reports back to the caller."""

    code = "GAME_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(status_code=self.status_code, detail=message)
        self.message = message

    def to_response(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(GameError):
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(GameError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(GameError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(GameError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class PreconditionFailed(GameError):
    code = "PRECONDITION_FAILED"
    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamFailure(GameError):
    """The judge service failed or answered with something unusable."""
    code = "UPSTREAM_FAILURE"
    status_code = status.HTTP_502_BAD_GATEWAY


class ResourceExhausted(GameError):
    code = "NO_CONTENT_AVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class RoomCreationFailed(GameError):
    code = "ROOM_CREATION_FAILED"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(GameError)
    async def game_error_handler(request: Request, exc: GameError):
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        logger.log(level, "%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info("Validation error on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Invalid request data",
                "code": ValidationError.code,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in e["loc"]),
                        "message": e["msg"],
                    }
                    for e in exc.errors()
                ],
            },
        )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail), "code": "HTTP_ERROR"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s", request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "An unexpected error occurred", "code": "INTERNAL_ERROR"},
        )
