"""FastAPI 应用工厂。

    uvicorn zeno_core.api.app:create_app --factory
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from zeno_core.api.routes import router
from zeno_core.api.service import ChatService, build_chat_service
from zeno_core.domain.exceptions import BusinessError
from zeno_core.infrastructure.logging.logger import logger


def _error(message: str, code: str, status: int) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": message, "code": code})


async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
    level = "error" if exc.http_status >= 500 else "warning"
    getattr(logger, level)(
        "Request failed",
        extra={"extra": {"path": request.url.path, "code": exc.code, "status": exc.http_status, **exc.extra}},
    )
    return _error(exc.message, exc.code, exc.http_status)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Invalid request", extra={"extra": {"path": request.url.path, "errors": str(exc.errors())}})
    return _error("Invalid request body", "INVALID_REQUEST", 400)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={"extra": {"path": request.url.path}})
    return _error("An unexpected error occurred. Please try again.", "INTERNAL_ERROR", 500)


def create_app(service: Optional[ChatService] = None) -> FastAPI:
    app = FastAPI(title="ZENO")
    app.state.chat_service = service or build_chat_service()
    app.add_exception_handler(BusinessError, business_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app
