"""
Exception handlers rendering errors as {"success": false, "error": "..."}
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from core.exceptions import ControlPlaneException
import logging

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def control_plane_exception_handler(request: Request, exc: ControlPlaneException):
    request_id = getattr(request.state, "request_id", "-")
    if exc.status_code >= 500:
        logger.error(f"[{request_id}] {request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"[{request_id}] {request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return error_response(exc.status_code, exc.message)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        details.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return error_response(400, "Invalid request: " + "; ".join(details))


async def storage_exception_handler(request: Request, exc: SQLAlchemyError):
    request_id = getattr(request.state, "request_id", "-")
    logger.error(f"[{request_id}] Storage failure on {request.method} {request.url.path}: {exc}")
    return error_response(500, "Internal storage error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ControlPlaneException, control_plane_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, storage_exception_handler)
