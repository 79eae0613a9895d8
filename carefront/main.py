# carefront/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from carefront.api.routes import router as api_router
from carefront.config import get_settings
from carefront.db import init_db
from carefront.errors import (
    BackendError,
    BackendUnavailableError,
    CarefrontError,
    ConfigurationError,
    ExtractionError,
    InvalidTransitionError,
    PersistenceError,
    RateLimitedError,
    RecordNotFoundError,
    SessionStateError,
    ValidationError,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = (
    (ValidationError, 400),
    (RecordNotFoundError, 404),
    (SessionStateError, 409),
    (InvalidTransitionError, 409),
    (RateLimitedError, 429),
    (BackendUnavailableError, 503),
    (PersistenceError, 503),
    (ExtractionError, 502),
    (BackendError, 502),
    (ConfigurationError, 500),
)


def status_for(exc: CarefrontError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="CareFront Intake API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # for dev; tighten in prod
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.exception_handler(CarefrontError)
async def carefront_error_handler(request: Request, exc: CarefrontError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={
            "detail": exc.user_message,
            "error": type(exc).__name__,
            "retryable": bool(getattr(exc, "retryable", False)),
        },
    )


@app.get("/")
def root():
    return {"message": "CareFront Intake API is running"}


app.include_router(api_router, prefix="/api")
