"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from questionbank.api.auth import router as auth_router
from questionbank.api.categories import router as categories_router
from questionbank.api.contexts import router as contexts_router
from questionbank.api.filters import router as filters_router
from questionbank.api.modules import router as modules_router
from questionbank.api.questions import router as questions_router
from questionbank.core.config import settings
from questionbank.core.database import init_db
from questionbank.core.exceptions import QBankError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME}...")
    init_db()
    logger.info("Database initialized")
    yield
    logger.info(f"Shutting down {settings.APP_NAME}...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url=None if settings.is_production() else "/docs",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

prefix = settings.API_V1_PREFIX
app.include_router(auth_router, prefix=f"{prefix}/auth", tags=["auth"])
app.include_router(contexts_router, prefix=f"{prefix}/contexts", tags=["contexts"])
app.include_router(categories_router, prefix=f"{prefix}/categories", tags=["categories"])
app.include_router(questions_router, prefix=f"{prefix}/questions", tags=["questions"])
app.include_router(filters_router, prefix=f"{prefix}/filters", tags=["filters"])
app.include_router(modules_router, prefix=f"{prefix}/modules", tags=["modules"])


@app.exception_handler(QBankError)
async def qbank_exception_handler(request: Request, exc: QBankError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error_type}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(IntegrityError)
async def integrity_exception_handler(request: Request, exc: IntegrityError):
    # Lost races on unique keys (top category, version number, idnumber).
    logger.warning(f"Integrity error: {exc.orig}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"error": {"message": "The record conflicts with existing data", "type": "conflict"}}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"message": exc.detail, "type": "http_error", "status_code": exc.status_code}}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": {"message": "Validation error", "type": "validation_error",
                           "details": jsonable_encoder(exc.errors())}}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    if settings.is_production():
        message = "An internal error occurred"
    else:
        message = str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"message": message, "type": "internal_error"}}
    )


@app.get("/health", tags=["Health"])
def health():
    return {"status": "ok", "version": settings.APP_VERSION, "environment": settings.ENVIRONMENT}
