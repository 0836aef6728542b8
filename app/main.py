# app/main.py
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import time
import uuid

from app.core.config import settings
from app.core.exceptions import ServiceError
from app.core.logging import logger
from app.db.database import init_db, close_db
from app.api.v1.router import api_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Topoo Identity API")
    await init_db()

    yield

    # Shutdown
    logger.info("Shutting down Topoo Identity API")
    await close_db()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    docs_url=("/api/docs" if settings.ENVIRONMENT == "development" else None),
    redoc_url=None,
    lifespan=lifespan,
)


@app.middleware("http")
async def add_request_context(request: Request, call_next):
    """Attach a request id and timing header to every response"""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()
    try:
        response = await call_next(request)
    except Exception as exc:
        # Anything the routers did not turn into a ServiceError
        logger.exception(
            "Unhandled exception while handling request",
            exc_info=exc,
            extra={"request_id": request_id},
        )
        response = JSONResponse(
            status_code=500,
            content={"error": "INTERNAL_ERROR", "message": "Internal server error"},
        )
    process_time = time.time() - start_time

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(process_time)
    return response


# CORS is open: callers are a desktop app and the request gateway, neither sends cookies.
# Registered last so it is outermost and 500 responses carry CORS headers too.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins or ["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# Include routers
app.include_router(api_router, prefix=settings.API_PREFIX)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Known failures become {"error", "message"} bodies"""
    if exc.status_code >= 500:
        logger.error(
            f"{exc.error} on {request.method} {request.url.path}",
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are plain 400s"""
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    message = "Invalid request"
    if fields:
        message = f"Invalid request: {', '.join(f for f in fields if f)}"
    return JSONResponse(
        status_code=400,
        content={"error": "INVALID_REQUEST", "message": message},
    )

