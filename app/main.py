"""
Drive connector backend: Google Drive OAuth connection and delegated Drive listing.

Load .env in development only (production uses env vars directly). Add CORS,
DriveError and global exception handlers, optional DB init.
"""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env only in development, before config reads the environment
if os.getenv("ENV", "development").lower() == "development":
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import FRONTEND_URL, LOG_LEVEL, SKIP_DB_INIT
from database import init_db
from drive_api import router as drive_api_router
from drive_oauth import router as drive_oauth_router
from errors import DriveError, InvalidArgument, StorageFailure

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create DB tables if not skipping (production runs migrations)
if not SKIP_DB_INIT:
    init_db()

app = FastAPI(
    title="Drive Connector",
    description="Google Drive connection for the study tracker: OAuth token lifecycle and read-only file browsing.",
)

# CORS: the UI sends a bearer token, not cookies; only the frontend origin is allowed
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL] if FRONTEND_URL else [],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@app.exception_handler(DriveError)
async def drive_error_handler(request: Request, exc: DriveError):
    """Render DriveError as {"error", "code"} with its HTTP status. Storage details stay in the log."""
    message = "Internal server error" if isinstance(exc, StorageFailure) else exc.msg
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message, "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed query/body parameters use the same envelope as InvalidArgument."""
    parts = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("query", "body"))
        parts.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return JSONResponse(
        status_code=InvalidArgument.status_code,
        content={"error": "; ".join(parts) or "Invalid request", "code": InvalidArgument.code},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions; log and return generic 500. Never leak stack traces."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "INTERNAL"},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(drive_oauth_router)
app.include_router(drive_api_router)
