# src/main.py

import asyncio
import contextlib
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.auth.maintenance import sweep_forever
from src.auth.token_manager import token_manager
from src.common.config import settings
from src.common.database.database import async_session, close_db_connection, connect_to_db
from src.common.logging_config import configure_logging
from src.common.utils.email_service import clear_transport_cache
from src.common.utils.global_messages import GlobalMessages
from src.router.routers import include_routers

configure_logging()
logger = logging.getLogger(__name__)


# Lifespan context manager for startup and shutdown events
@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect_to_db()
    sweeper = asyncio.create_task(sweep_forever(async_session, token_manager))
    yield
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await clear_transport_cache()
    await close_db_connection()


# Initialize FastAPI app with lifespan manager
app = FastAPI(
    title="Clinic Auth API",
    description="Authentication, sessions and activity/audit logging for the clinic backend",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware for CORS using allowed origins from settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": GlobalMessages.VALIDATION_FAILED, "details": jsonable_encoder(details)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    correlation_id = uuid.uuid4().hex
    logger.exception("Unhandled error %s on %s %s", correlation_id, request.method, request.url.path)
    body = {"success": False, "error": GlobalMessages.INTERNAL_ERROR, "correlationId": correlation_id}
    if settings.DEBUG and not settings.is_production:
        body["details"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


# Include routers from a separate file
include_routers(app)


# Root endpoint
@app.get("/")
async def root():
    return {"success": True, "message": "Clinic Auth API is running", "docs": "/docs"}
