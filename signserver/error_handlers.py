import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.exceptions import RequestValidationError

from signserver.core.errors import SignServerError

logger = logging.getLogger("signserver.errors")

def register_error_handlers(app: FastAPI):
    @app.exception_handler(SignServerError)
    async def signserver_exc_handler(request: Request, exc: SignServerError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "%s path=%s status=%s detail=%r",
            type(exc).__name__, request.url.path, exc.status_code, exc.message
        )
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    @app.exception_handler(HTTPException)
    async def http_exc_handler(request: Request, exc: HTTPException):
        logger.warning(
            "HTTPException path=%s status=%s detail=%r",
            request.url.path, exc.status_code, exc.detail
        )
        return PlainTextResponse(
            str(exc.detail) if exc.detail else "HTTP error",
            status_code=exc.status_code,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        logger.warning(
            "ValidationError path=%s errors=%s",
            request.url.path, exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content={"error": "Validation error", "details": jsonable_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error at path=%s", request.url.path)
        return PlainTextResponse("internal server error", status_code=500)


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception objects that JSONResponse can't encode
    return [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]
