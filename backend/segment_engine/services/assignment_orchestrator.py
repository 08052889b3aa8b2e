"""
Пересчет назначений покупателей по сегментам
"""
import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from segment_engine.services.criteria_evaluator import compute_assignments
from segment_engine.services.customer_metrics_source import CustomerMetricsSource
from segment_engine.services.segment_analytics_service import SegmentAnalyticsService
from segment_engine.services.segment_locks import SegmentLockRegistry, segment_locks
from segment_engine.services.segment_repository import SegmentRepository

logger = logging.getLogger(__name__)


DEFAULT_MAX_WORKERS = int(os.getenv("SEGMENTS_REFRESH_MAX_WORKERS", "4"))


@dataclass
class BatchRecomputeResult:
    """Итог пересчета всех активных сегментов"""
    total: int = 0
    processed: int = 0
    assigned: Dict[str, int] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "total_segments": self.total,
            "refreshed_segments": self.processed,
            "assigned_customers": dict(self.assigned),
            "failed_segments": dict(self.failed),
        }


class AssignmentOrchestrator:
    """
    Пересчет назначений: кандидаты из источника метрик -> оценка критериев
    в памяти -> атомарная замена набора назначений сегмента.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        metrics_source: CustomerMetricsSource,
        locks: Optional[SegmentLockRegistry] = None,
        max_workers: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.metrics_source = metrics_source
        self.locks = locks if locks is not None else segment_locks
        self.max_workers = max(1, max_workers or DEFAULT_MAX_WORKERS)
        self.analytics = SegmentAnalyticsService(session_factory, metrics_source)

    async def recompute_segment(self, segment_id: str, wait: bool = True) -> int:
        """
        Пересчитать назначения одного сегмента, вернуть число назначенных покупателей.

        Запись начинается только после оценки всех кандидатов: при ошибке
        источника или отмене старый набор назначений остается нетронутым.
        """
        async with self.locks.hold(segment_id, wait=wait):
            async with self.session_factory() as session:
                segment = await SegmentRepository(session).find_by_id(segment_id)
                criteria = dict(segment.criteria or {})
                segment_name = segment.name

            candidates = await self.metrics_source.fetch_candidates(criteria.get("status"))
            assignments = compute_assignments(criteria, candidates)

            async with self.session_factory() as session:
                assigned_count = await SegmentRepository(session).replace_assignments(segment_id, assignments)

        logger.info(
            f"Сегмент {segment_id} ({segment_name}) пересчитан: "
            f"{assigned_count} из {len(candidates)} кандидатов"
        )
        return assigned_count

    async def recompute_and_update_analytics(self, segment_id: str, wait: bool = True) -> int:
        assigned_count = await self.recompute_segment(segment_id, wait=wait)
        await self.analytics.update_analytics(segment_id)
        return assigned_count

    async def recompute_all(
        self,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> BatchRecomputeResult:
        """
        Пересчет всех активных сегментов с обновлением аналитики.

        Ошибка одного сегмента логируется и не останавливает остальные.
        """
        async with self.session_factory() as session:
            segment_ids = await SegmentRepository(session).list_active_segment_ids()

        result = BatchRecomputeResult(total=len(segment_ids))
        semaphore = asyncio.Semaphore(self.max_workers)
        done = 0

        async def _process(segment_id: str) -> None:
            nonlocal done
            async with semaphore:
                try:
                    result.assigned[segment_id] = await self.recompute_and_update_analytics(segment_id)
                    result.processed += 1
                except Exception as e:
                    logger.error(f"Ошибка пересчета сегмента {segment_id}: {e}", exc_info=True)
                    result.failed[segment_id] = str(e)
                finally:
                    done += 1
                    if progress_callback:
                        progress_callback(done, result.total, segment_id)

        await asyncio.gather(*(_process(segment_id) for segment_id in segment_ids))

        logger.info(
            f"Пересчет сегментов завершен: {result.processed} из {result.total}, "
            f"ошибок: {len(result.failed)}"
        )
        return result
