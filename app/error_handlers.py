from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

from domain.errors import DocumentNotFoundError, DocumentValidationError

logger = logging.getLogger(__name__)


def attach_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DocumentNotFoundError)
    async def _not_found(request: Request, exc: DocumentNotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message, "code": exc.code})

    @app.exception_handler(DocumentValidationError)
    async def _invalid_document(request: Request, exc: DocumentValidationError):
        logger.warning(f"Rejected document on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=400, content={"detail": exc.message, "code": exc.code})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
