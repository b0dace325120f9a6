"""Main FastAPI application"""
import os
import logging
import logging.config
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from motor.motor_asyncio import AsyncIOMotorClient
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

import config
from auth_routes import router as auth_router
from dependencies import limiter
from routes import router as api_router

# --- Unified Logging Configuration with Rich ---
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(name)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "class": "rich.logging.RichHandler",
            "formatter": "default",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_time": True,
            "show_path": False,
            "log_time_format": "%Y-%m-%d %H:%M:%S",
            "markup": False,
        },
    },
    "loggers": {
        "uvicorn": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.error": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "": {  # Root logger for our application
            "handlers": ["default"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}

logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)

# Paths whose request bodies may carry files (Excel uploads, base64 receipt images)
UPLOAD_PATHS = {"/api/transactions/import", "/api/ai/parse"}

# Application state to hold the database client and collections
app_state = {}


# --- Middleware for Upload Size Limit ---
class LimitUploadSizeMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path in UPLOAD_PATHS:
            content_length_header = request.headers.get("content-length")
            if content_length_header:
                try:
                    content_length = int(content_length_header)
                except ValueError:
                    logger.warning("Upload rejected: Invalid Content-Length header.")
                    return Response("Invalid Content-Length header.", status_code=400)
                if content_length > config.MAX_UPLOAD_SIZE:
                    logger.warning(f"Upload rejected: size {content_length} exceeds limit {config.MAX_UPLOAD_SIZE}.")
                    return Response(
                        f"Maximum upload size limit ({config.MAX_UPLOAD_SIZE / (1024 * 1024):.1f} MB) exceeded.",
                        status_code=413,
                    )
        return await call_next(request)


async def _ensure_indexes(db) -> None:
    await db["users"].create_index("github_id", unique=True)
    await db["sessions"].create_index("user_id")
    await db["transactions"].create_index([("user_id", 1), ("date", -1)])


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Connect to MongoDB
    logger.info(f"Connecting to MongoDB database '{config.DB_NAME}'...")
    try:
        app_state["db_client"] = AsyncIOMotorClient(config.MONGODB_URI)
        db = app_state["db_client"][config.DB_NAME]
        await app_state["db_client"].admin.command('ping')
        logger.info("MongoDB ping successful.")
        await _ensure_indexes(db)
        app_state["users_collection"] = db.get_collection("users")
        app_state["sessions_collection"] = db.get_collection("sessions")
        app_state["transactions_collection"] = db.get_collection("transactions")
        logger.info(f"Successfully connected to MongoDB database: {config.DB_NAME}")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        app_state["users_collection"] = None
        app_state["sessions_collection"] = None
        app_state["transactions_collection"] = None
    app_state["save_at_front"] = config.SAVE_AT_FRONT
    logger.info(f"Configuration: SAVE_AT_FRONT = {config.SAVE_AT_FRONT}")

    yield

    # Shutdown: Close MongoDB connection
    if app_state.get("db_client"):
        logger.info("Closing MongoDB connection...")
        app_state["db_client"].close()
        logger.info("MongoDB connection closed.")


app = FastAPI(
    title="AI Ledger API",
    description="Personal income/expense ledger with GitHub login, AI parsing and AI reports.",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error handling {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LimitUploadSizeMiddleware)

app.include_router(auth_router, prefix="/api", tags=["auth"])
app.include_router(api_router, prefix="/api", tags=["api"])

# Static front-end build, mounted last so it never shadows /api
if os.path.isdir(config.PUBLIC_DIR):
    app.mount("/", StaticFiles(directory=config.PUBLIC_DIR, html=True), name="static")
else:
    logger.info(f"No static directory '{config.PUBLIC_DIR}', serving the API only.")


@app.middleware("http")
async def add_app_config_to_request(request: Request, call_next):
    """Adds database collections and configuration settings to the request state."""
    request.state.db_client = app_state.get("db_client")
    request.state.users_collection = app_state.get("users_collection")
    request.state.sessions_collection = app_state.get("sessions_collection")
    request.state.transactions_collection = app_state.get("transactions_collection")
    request.state.save_at_front = app_state.get("save_at_front", config.SAVE_AT_FRONT)
    return await call_next(request)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
