import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .database import Base, engine
from .exceptions import AuditLogWriteError, FreeSignError
from .logging_config import configure_logging
from .routers import documents, realtime, signatures, signing, users
from .services import storage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and create database tables on startup"""
    configure_logging()
    try:
        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully!")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
    yield


app = FastAPI(title="FreeSign", lifespan=lifespan)


@app.exception_handler(FreeSignError)
async def freesign_error_handler(request: Request, exc: FreeSignError):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, f"{type(exc).__name__}: {exc.detail}", extra=exc.context)

    body = {"detail": exc.detail}
    if isinstance(exc, AuditLogWriteError):
        body["signature_id"] = exc.signature_id
    return JSONResponse(status_code=exc.status_code, content=body)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.debug(
        "%.0fms",
        (time.perf_counter() - start) * 1000,
        extra={"method": request.method, "path": request.url.path, "status": response.status_code},
    )
    return response


# Mount API routers
app.include_router(users.router, tags=["users"])
app.include_router(documents.router, prefix="/documents", tags=["documents"])
app.include_router(signing.router, prefix="/signing", tags=["signing"])
app.include_router(signatures.router, tags=["signatures"])
app.include_router(realtime.router, tags=["realtime"])


@app.get("/health")
def health_check():
    """Health check endpoint for debugging"""
    return {
        "status": "ok",
        "database": engine.dialect.name,
        "storage": "vercel_blob" if storage.is_blob_storage() else "local",
        "email": "sendgrid" if settings.SENDGRID_API_KEY else "log",
    }
