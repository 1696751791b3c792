import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from workshop.config import Settings
from workshop.db import build_engine, create_db_and_tables
from workshop.logging import configure_logging, log_event, logger, request_id_middleware
from workshop.routers import auth, items, transactions, users

_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "NOT_AUTHENTICATED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables(app.state.engine)  # ✅ 启动阶段建表
    yield
    app.state.engine.dispose()
    log_event("app_shutdown")


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, dict):
        code = detail.get("code") or _STATUS_CODES.get(exc.status_code, "ERROR")
        message = detail.get("message") or ""
    else:
        code = _STATUS_CODES.get(exc.status_code, "ERROR")
        message = "Route not found" if exc.status_code == 404 and detail == "Not Found" else str(detail)

    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "code": code, "message": message},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "code": "VALIDATION_ERROR",
            "message": "Validation failed",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    settings: Settings = request.app.state.settings
    log_event(
        "unhandled_error",
        level=logging.ERROR,
        path=request.url.path,
        request_id=getattr(request.state, "request_id", None),
        error=f"{type(exc).__name__}: {exc}",
    )
    content = {"success": False, "code": "INTERNAL_ERROR", "message": "Something went wrong!"}
    # 生产环境不暴露内部错误
    if not settings.is_production:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    # 缺 SECRET_KEY / DATABASE_URL 时这里直接抛 ValidationError，进程起不来
    settings = settings or Settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Workshop Inventory", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = build_engine(settings.database_url)

    app.middleware("http")(request_id_middleware)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(auth.router)
    app.include_router(items.router)
    app.include_router(transactions.router)
    app.include_router(users.router)

    @app.get("/health")
    def health():
        return {"success": True, "status": "OK"}

    logger.debug("app created (environment=%s)", settings.environment)
    return app


app = create_app()
