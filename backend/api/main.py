"""
SwiftBuyBack API: FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from db.session import create_tables, engine
from orders.errors import OrderError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("SwiftBuyBack API starting up", version=settings.app_version)
    if settings.database_url.startswith("sqlite"):
        await create_tables(engine)
    yield
    logger.info("SwiftBuyBack API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Device buyback order lifecycle service",
    lifespan=lifespan,
)


@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    if exc.http_status >= 500:
        logger.error("api.order_error", path=request.url.path, status=exc.http_status, error=exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and path params are client errors like any other validation failure."""
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "order_id": None, "detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("api.unhandled_error", path=request.url.path, error=str(exc), exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "order_id": None})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# Import and register routers
from api.v1.routers import orders, scheduler

app.include_router(orders.router)
app.include_router(scheduler.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run / load balancers."""
    return {"status": "healthy", "version": settings.app_version}
