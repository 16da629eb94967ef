import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from . import models  # noqa: F401 - register models with Base
from .config import CIVIL_TIMEZONE
from .database import Base, engine
from .domain.problems.router import router as problems_router
from .domain.reservations.router import router as reservations_router
from .domain.slots.router import router as slots_router
from .domain.tickets.router import router as tickets_router
from .errors import SchedulingError
from .routes.scheduler import router as scheduler_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("arq.worker").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Mentorslots API starting ({CIVIL_TIMEZONE} civil time)")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Scheduling tables ready")
    except SQLAlchemyError as e:
        # Several uvicorn workers may race to create the same tables
        if "already exists" in str(e) or "duplicate key" in str(e):
            logger.info("Scheduling tables were created by another worker")
        else:
            logger.error(f"Failed to create scheduling tables: {e}")
            raise

    yield
    logger.info("Mentorslots API stopped")


app = FastAPI(title="Mentorslots API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(SchedulingError)
async def scheduling_exception_handler(request: Request, exc: SchedulingError):
    """Render engine errors with their kind and whether a retry can help"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Malformed input is a validation_error (422) in the engine's error shape;
    a missing bearer header is reported as 401 instead
    """
    errors = exc.errors()
    if any("authorization" in str(error.get("loc", "")).lower() for error in errors):
        logger.warning(f"{request.method} {request.url.path}: no bearer token")
        return JSONResponse(
            status_code=401,
            content={"error": "not_authenticated", "detail": "Bearer token required", "retryable": False},
        )

    logger.info(f"{request.method} {request.url.path} rejected: invalid input: {errors}")
    return JSONResponse(
        status_code=422,
        content={"error": "validation_error", "detail": jsonable_errors(exc), "retryable": False},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(slots_router)
app.include_router(reservations_router)
app.include_router(tickets_router)
app.include_router(problems_router)
app.include_router(scheduler_router)


@app.get("/")
def root():
    return {"message": "Mentorslots API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
