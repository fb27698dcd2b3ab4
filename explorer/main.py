"""
Main entry point for FastAPI application.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from explorer.config import settings
from explorer.errors import AppError, InternalError, ValidationError
from explorer.logging_config import setup_logging
from explorer.routes import access_rules, auth, shares, users
from explorer.services.bootstrap_service import bootstrap_admin
from explorer.utils.db_async import (
    DATABASE_URL,
    SessionLocal,
    describe_database_url,
    dispose_engine,
    init_db,
)

logger = logging.getLogger(__name__)

setup_logging(level=settings.log_level, access_log=settings.access_log, sql_echo=settings.sql_echo)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_init_db:
        logger.info("Running init_db()…")
        logger.info(f"DB target: {describe_database_url(DATABASE_URL)}")
        try:
            await init_db()
            logger.info("DB ready.")
        except Exception:
            logger.exception("init_db failed")
            raise
    else:
        logger.info("Skipping init_db(); auto_init_db disabled")

    if settings.auth_enabled:
        async with SessionLocal() as db:
            await bootstrap_admin(
                db,
                email=settings.auth_admin_email,
                password=settings.auth_admin_password,
                hash_iterations=settings.password_hash_iterations,
            )

    yield

    try:
        logger.info("Disposing DB engine…")
        await dispose_engine()
        logger.info("DB engine disposed.")
    except Exception:
        logger.exception("Failed to dispose DB engine")


def error_response(err: AppError) -> JSONResponse:
    return JSONResponse(status_code=err.status_code, content={"error": err.to_dict()})


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc)


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return error_response(ValidationError("Invalid request.", details={"errors": errors}))


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(InternalError())


def create_app() -> FastAPI:
    application = FastAPI(title="Explorer", lifespan=lifespan)
    application.add_exception_handler(AppError, handle_app_error)  # type: ignore[arg-type]
    application.add_exception_handler(RequestValidationError, handle_request_validation)  # type: ignore[arg-type]
    application.add_exception_handler(Exception, handle_unexpected)

    application.include_router(auth.router)
    application.include_router(users.router)
    application.include_router(access_rules.router)
    application.include_router(shares.router)
    application.include_router(shares.public_router)

    @application.get("/health")
    async def health_check():
        """Health Check Endpoint"""
        return {"status": "ok"}

    return application


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
