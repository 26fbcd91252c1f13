"""Main FastAPI application"""
import logging
import logging.config
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from forms.expense_form import LISTING_PATH
from models.expense import BOOKINGS_COLLECTION, REQUIRED_MESSAGES, register_expense_collection
from pages import router as pages_router
from routes import router as api_router

# --- Unified Logging Configuration with Rich ---
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            # RichHandler renders time and level itself
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
        "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.access": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "": {  # Root logger for our application
            "handlers": ["default"],
            "level": settings.log_level.upper(),
            "propagate": False,
        },
    },
}

logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"

if not settings.mongodb_uri:
    logger.error("MONGODB_URI environment variable not set! Database connection will fail.")

# Application state to hold the database client and collections
app_state = {}

# --- Rate Limiter Setup ---
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit],
    enabled=settings.rate_limit_enabled,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Connect to MongoDB and register the expense schema
    logger.info(f"Connecting to MongoDB database '{settings.db_name}'...")
    try:
        app_state["db_client"] = AsyncIOMotorClient(settings.mongodb_uri)
        app_state["db"] = app_state["db_client"][settings.db_name]
        await app_state["db_client"].admin.command("ping")
        logger.info("MongoDB ping successful.")
        app_state["expenses_collection"] = await register_expense_collection(app_state["db"])
        app_state["bookings_collection"] = app_state["db"].get_collection(BOOKINGS_COLLECTION)
        logger.info(f"Successfully connected to MongoDB database: {settings.db_name}")
    except (PyMongoError, TypeError) as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        app_state["db"] = None
        app_state["expenses_collection"] = None
        app_state["bookings_collection"] = None

    yield  # Application runs here

    # Shutdown: Close MongoDB connection
    if app_state.get("db_client"):
        logger.info("Closing MongoDB connection...")
        app_state["db_client"].close()
        logger.info("MongoDB connection closed.")


def _validation_message(exc: RequestValidationError) -> str:
    """First validation problem, phrased for the user."""
    for error in exc.errors():
        loc = error.get("loc") or ()
        field = loc[-1] if loc else None
        if error.get("type") == "missing" and field in REQUIRED_MESSAGES:
            return REQUIRED_MESSAGES[field]
        return str(error.get("msg", "Invalid request")).removeprefix("Value error, ")
    return "Invalid request"


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)} on {request.url.path}: {exc.detail}")
    return JSONResponse({"message": f"Rate limit exceeded: {exc.detail}"}, status_code=429)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Party Hall Admin API",
        description="Bookings and expense records for function-hall operations.",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse({"message": message}, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        message = _validation_message(exc)
        logger.info(f"{request.method} {request.url.path} rejected: {message}")
        return JSONResponse({"message": message}, status_code=400)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
        return JSONResponse({"message": "An unexpected server error occurred."}, status_code=500)

    # --- Middleware (order matters) ---
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Make app state accessible via the request
    @app.middleware("http")
    async def add_app_config_to_request(request: Request, call_next):
        """Adds the database collections to the request state."""
        request.state.db = app_state.get("db")
        request.state.expenses_collection = app_state.get("expenses_collection")
        request.state.bookings_collection = app_state.get("bookings_collection")
        return await call_next(request)

    app.include_router(api_router, prefix="/api", tags=["api"])
    app.include_router(pages_router)
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    @app.get("/", include_in_schema=False)
    async def index():
        return RedirectResponse(LISTING_PATH)

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
