"""
Операции над сегментами для административных инструментов
"""
import logging
import math
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from segment_engine.models.customer_segment import CustomerSegment
from segment_engine.models.segment_analytics import SegmentAnalytics
from segment_engine.services.assignment_orchestrator import AssignmentOrchestrator, BatchRecomputeResult
from segment_engine.services.criteria_evaluator import validate_criteria
from segment_engine.services.customer_metrics_source import CustomerMetricsSource
from segment_engine.services.exceptions import SegmentConflictError, SegmentValidationError
from segment_engine.services.segment_locks import SegmentLockRegistry
from segment_engine.services.segment_repository import SegmentRepository

logger = logging.getLogger(__name__)


DETAIL_MEMBERS_PREVIEW = 10
ANALYTICS_DEFAULT_DAYS = 30
MEMBERS_MAX_LIMIT = 100


class SegmentService:
    """Создание, изменение, удаление и чтение сегментов с пересчетом назначений"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        metrics_source: Optional[CustomerMetricsSource] = None,
        locks: Optional[SegmentLockRegistry] = None,
        max_workers: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.metrics_source = metrics_source or CustomerMetricsSource(session_factory)
        self.orchestrator = AssignmentOrchestrator(
            session_factory,
            self.metrics_source,
            locks=locks,
            max_workers=max_workers,
        )

    async def create_segment(
        self,
        name: Optional[str],
        criteria: Optional[Dict[str, Any]],
        description: Optional[str] = None,
        color: Optional[str] = None,
        created_by: Optional[str] = None,
        is_system: bool = False,
    ) -> Tuple[CustomerSegment, int]:
        """Создать сегмент и сразу назначить покупателей"""
        if not name or not name.strip() or criteria is None:
            raise SegmentValidationError("Name and criteria are required")
        cleaned = validate_criteria(criteria)

        async with self.session_factory() as session:
            segment = await SegmentRepository(session).create(
                name=name.strip(),
                criteria=cleaned,
                description=description,
                color=color,
                is_system=is_system,
                created_by=created_by,
            )

        assigned = await self.orchestrator.recompute_and_update_analytics(segment.id)
        return segment, assigned

    async def update_segment(self, segment_id: str, changes: Dict[str, Any]) -> Tuple[CustomerSegment, Optional[int]]:
        """
        Обновить сегмент. Возвращает (сегмент, число назначенных) -
        второе None, если пересчет не понадобился.
        """
        async with self.session_factory() as session:
            repo = SegmentRepository(session)
            segment = await repo.find_by_id(segment_id)

            if segment.is_system and changes.get("criteria") is not None:
                raise SegmentConflictError("Cannot modify criteria of system segments")

            updates = {key: value for key, value in changes.items() if value is not None}
            if "name" in updates:
                updates["name"] = str(updates["name"]).strip()
                if not updates["name"]:
                    raise SegmentValidationError("Name must not be empty")
            if "criteria" in updates:
                updates["criteria"] = validate_criteria(updates["criteria"])

            needs_recompute = (
                ("criteria" in updates and updates["criteria"] != (segment.criteria or {}))
                or ("is_active" in updates and updates["is_active"] != segment.is_active)
            )
            segment = await repo.update(segment, updates)

        assigned = None
        if needs_recompute:
            assigned = await self.orchestrator.recompute_and_update_analytics(segment_id)
        return segment, assigned

    async def delete_segment(self, segment_id: str) -> None:
        async with self.orchestrator.locks.hold(segment_id):
            async with self.session_factory() as session:
                await SegmentRepository(session).delete(segment_id)
        self.orchestrator.locks.forget(segment_id)

    async def list_segments(
        self,
        is_active: Optional[bool] = True,
        is_system: Optional[bool] = None,
        created_by: Optional[str] = None,
    ) -> List[Tuple[CustomerSegment, int, Optional[float]]]:
        async with self.session_factory() as session:
            return await SegmentRepository(session).find_all(
                is_active=is_active,
                is_system=is_system,
                created_by=created_by,
            )

    async def get_segment(self, segment_id: str) -> CustomerSegment:
        async with self.session_factory() as session:
            return await SegmentRepository(session).find_by_id(segment_id)

    async def get_segment_detail(self, segment_id: str) -> Dict[str, Any]:
        """Сегмент + первые участники + аналитика за последние 30 дней"""
        today = date.today()
        async with self.session_factory() as session:
            repo = SegmentRepository(session)
            segment = await repo.find_by_id(segment_id)
            customer_count = await repo.count_members(segment_id)
            members = await repo.list_members(segment_id, limit=DETAIL_MEMBERS_PREVIEW, offset=0)
            analytics = await repo.list_analytics(
                segment_id,
                today - timedelta(days=ANALYTICS_DEFAULT_DAYS),
                today,
            )
        return {
            "segment": segment,
            "customer_count": customer_count,
            "members": members,
            "analytics": analytics,
        }

    async def list_members(self, segment_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Участники сегмента постранично: score по убыванию, затем время назначения"""
        page = max(1, page)
        limit = min(MEMBERS_MAX_LIMIT, max(1, limit))
        offset = (page - 1) * limit

        async with self.session_factory() as session:
            repo = SegmentRepository(session)
            segment = await repo.find_by_id(segment_id)
            total = await repo.count_members(segment_id)
            members = await repo.list_members(segment_id, limit=limit, offset=offset)

        total_pages = math.ceil(total / limit) if total else 0
        return {
            "segment": segment,
            "members": members,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": total_pages,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }

    async def get_analytics(
        self,
        segment_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Tuple[CustomerSegment, List[SegmentAnalytics], date, date]:
        date_to = date_to or date.today()
        date_from = date_from or date_to - timedelta(days=ANALYTICS_DEFAULT_DAYS)
        if date_from > date_to:
            raise SegmentValidationError("date_from must not be later than date_to")

        async with self.session_factory() as session:
            repo = SegmentRepository(session)
            segment = await repo.find_by_id(segment_id)
            analytics = await repo.list_analytics(segment_id, date_from, date_to)
        return segment, analytics, date_from, date_to

    async def refresh_segment(self, segment_id: str, wait: bool = True) -> int:
        """Ручной пересчет одного сегмента"""
        return await self.orchestrator.recompute_and_update_analytics(segment_id, wait=wait)

    async def refresh_all(self, progress_callback=None) -> BatchRecomputeResult:
        """Ручной пересчет всех активных сегментов"""
        return await self.orchestrator.recompute_all(progress_callback=progress_callback)
