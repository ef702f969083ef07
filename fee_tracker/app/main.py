from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from contextlib import asynccontextmanager
import logging

from fee_tracker.core.config import settings
from fee_tracker.core.logging_config import setup_logging
from fee_tracker.services.report import close_report_service
from fee_tracker.app.api.v1 import fees

# Setup logging
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting Fee Tracker API")
    if not settings.has_explorer_key:
        logger.warning("ETHERSCAN_API_KEY is not set; reports will fall back to cached or demo data")
    yield
    logger.info("Shutting down Fee Tracker API")
    await close_report_service()

app = FastAPI(
    title="Fee Tracker API",
    description="Protocol fee collection analytics",
    version="0.1.0",
    lifespan=lifespan
)

# CORS - configured via CORS_ORIGINS env var, defaults to localhost in development
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors())},
    )


# Routes
app.include_router(fees.router, prefix="/api/v1", tags=["fees"])

@app.get("/")
async def root():
    return {
        "status": "operational",
        "service": "Fee Tracker API",
        "version": "0.1.0"
    }
