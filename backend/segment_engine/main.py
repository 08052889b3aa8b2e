import logging
import os

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from segment_engine.api import segments
from segment_engine.services.exceptions import (
    SegmentConflictError,
    SegmentNotFoundError,
    SegmentValidationError,
    SourceUnavailableError,
)
from segment_engine.services.recompute_task_manager import task_manager
from segment_engine.services.segment_refresh_scheduler import (
    start_nightly_segment_refresh_scheduler,
    stop_nightly_segment_refresh_scheduler,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Customer Segmentation Engine API",
    description="Сегментация покупателей по метрикам LTV, health score и churn risk",
    version="1.0.0"
)

# CORS
cors_origins = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SegmentNotFoundError)
async def segment_not_found_handler(request: Request, exc: SegmentNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(SegmentConflictError)
async def segment_conflict_handler(request: Request, exc: SegmentConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(SegmentValidationError)
async def segment_validation_handler(request: Request, exc: SegmentValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(SourceUnavailableError)
async def source_unavailable_handler(request: Request, exc: SourceUnavailableError):
    logger.error(f"Источник метрик недоступен: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# Глобальный обработчик исключений
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Необработанная ошибка {request.method} {request.url.path}: {exc}", exc_info=True)
    detail = str(exc) if os.getenv("ENVIRONMENT", "development") == "development" else "Internal server error"
    return JSONResponse(status_code=500, content={"detail": detail})


app.include_router(segments.router, prefix="/api/segments", tags=["segments"])


@app.on_event("startup")
async def on_startup():
    # Очистка старых задач пересчета
    task_manager.cleanup_old_tasks(max_age_hours=24)
    await start_nightly_segment_refresh_scheduler(app)


@app.on_event("shutdown")
async def on_shutdown():
    await stop_nightly_segment_refresh_scheduler(app)


@app.get("/")
async def root():
    return {"message": "Customer Segmentation Engine API", "version": "1.0.0"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
