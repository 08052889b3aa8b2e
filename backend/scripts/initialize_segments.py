"""
Скрипт первичной инициализации сегментов: системные сегменты, назначения и аналитика.

Использование:
    python -m scripts.initialize_segments
    python -m scripts.initialize_segments --seed
"""
import argparse
import asyncio
import os
import sys
from pathlib import Path
import logging

# Добавляем корневую директорию проекта в путь
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from segment_engine.database.connection import AsyncSessionLocal
from segment_engine.database.seeds import seed_system_segments
from segment_engine.services.segment_service import SegmentService

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def initialize_segments(seed: bool = False) -> bool:
    if seed:
        async with AsyncSessionLocal() as session:
            await seed_system_segments(session)

    service = SegmentService(AsyncSessionLocal)
    logger.info("Starting segment initialization")
    result = await service.refresh_all()
    logger.info("Initialized %s of %s segments", result.processed, result.total)

    logger.info("Segment summary:")
    for segment, customer_count, _ in await service.list_segments():
        logger.info("- %s: %s customers (%s)", segment.name, customer_count, segment.color)

    for segment_id, error in result.failed.items():
        logger.error("Segment %s failed: %s", segment_id, error)
    return not result.failed


def main() -> None:
    parser = argparse.ArgumentParser(description="Пересчет назначений и аналитики всех активных сегментов")
    parser.add_argument("--seed", action="store_true", help="Создать системные сегменты перед пересчетом")
    args = parser.parse_args()

    if not asyncio.run(initialize_segments(seed=args.seed)):
        sys.exit(1)


if __name__ == "__main__":
    main()
