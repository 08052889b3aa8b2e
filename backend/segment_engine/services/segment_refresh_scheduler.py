"""
Ночной планировщик пересчета всех активных сегментов.
"""
import asyncio
import logging
import os
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from segment_engine.database.connection import AsyncSessionLocal
from segment_engine.services.segment_service import SegmentService

logger = logging.getLogger(__name__)

# Минимальная пауза между запусками, сек
MIN_WAIT_SECONDS = 60


def _env_bool(name: str, default: str = "false") -> bool:
    value = os.getenv(name, default).strip().lower()
    return value in {"1", "true", "yes", "y", "on"}


def _refresh_time() -> tuple:
    return (
        int(os.getenv("SEGMENTS_REFRESH_NIGHTLY_HOUR", "3")),
        int(os.getenv("SEGMENTS_REFRESH_NIGHTLY_MINUTE", "0")),
    )


def _seconds_until(hour: int, minute: int) -> float:
    now = datetime.now()
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def run_nightly_segment_refresh(session_factory: Optional[async_sessionmaker] = None) -> None:
    """Пересчет назначений и аналитики всех активных сегментов"""
    service = SegmentService(session_factory or AsyncSessionLocal)
    logger.info("Ночной пересчет сегментов запущен")
    result = await service.refresh_all()
    if result.failed:
        logger.warning(
            "Ночной пересчет сегментов: %s из %s, ошибки: %s",
            result.processed,
            result.total,
            result.failed,
        )
    else:
        logger.info("Ночной пересчет сегментов завершен: %s из %s", result.processed, result.total)


async def nightly_segment_refresh_loop(
    stop_event: asyncio.Event,
    session_factory: Optional[async_sessionmaker] = None,
    hour: int = 3,
    minute: int = 0,
) -> None:
    """Ждет заданного времени и пересчитывает сегменты, пока не выставлен stop_event"""
    while not stop_event.is_set():
        try:
            wait_seconds = max(MIN_WAIT_SECONDS, _seconds_until(hour, minute))
            await asyncio.wait_for(stop_event.wait(), timeout=wait_seconds)
        except asyncio.TimeoutError:
            try:
                await run_nightly_segment_refresh(session_factory)
            except Exception as exc:
                logger.error("Ошибка ночного пересчета сегментов: %s", exc, exc_info=True)


async def start_nightly_segment_refresh_scheduler(app, session_factory: Optional[async_sessionmaker] = None) -> None:
    if not _env_bool("SEGMENTS_REFRESH_NIGHTLY_ENABLED", "false"):
        logger.info("Ночной пересчет сегментов отключен (SEGMENTS_REFRESH_NIGHTLY_ENABLED)")
        return

    hour, minute = _refresh_time()
    stop_event = asyncio.Event()
    task = asyncio.create_task(
        nightly_segment_refresh_loop(stop_event, session_factory, hour=hour, minute=minute)
    )

    app.state.nightly_segment_refresh_stop_event = stop_event
    app.state.nightly_segment_refresh_task = task

    logger.info("Ночной пересчет сегментов запланирован на %02d:%02d", hour, minute)


async def stop_nightly_segment_refresh_scheduler(app) -> None:
    stop_event = getattr(app.state, "nightly_segment_refresh_stop_event", None)
    task = getattr(app.state, "nightly_segment_refresh_task", None)
    if stop_event:
        stop_event.set()
    if task:
        await task
