"""
Репозиторий сегментов: определения сегментов, назначения покупателей и дневная аналитика
"""
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, delete, func, desc
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from segment_engine.models.customer import Customer
from segment_engine.models.customer_segment import CustomerSegment, DEFAULT_SEGMENT_COLOR
from segment_engine.models.segment_assignment import SegmentAssignment
from segment_engine.models.segment_analytics import SegmentAnalytics
from segment_engine.services.customer_metrics_source import (
    latest_metrics_subquery,
    DEFAULT_LIFETIME_VALUE,
    DEFAULT_HEALTH_SCORE,
    DEFAULT_CHURN_RISK_SCORE,
)
from segment_engine.services.exceptions import SegmentNotFoundError, SegmentConflictError

logger = logging.getLogger(__name__)


UPDATABLE_FIELDS = ("name", "description", "criteria", "color", "is_active")

ANALYTICS_FIELDS = ("customer_count", "avg_ltv", "avg_health_score", "avg_churn_risk", "total_revenue")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SegmentRepository:
    """Хранилище сегментов поверх AsyncSession"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    # ---------- Сегменты ----------

    async def create(
        self,
        name: str,
        criteria: Dict[str, Any],
        description: Optional[str] = None,
        color: Optional[str] = None,
        is_active: bool = True,
        is_system: bool = False,
        created_by: Optional[str] = None,
    ) -> CustomerSegment:
        now = _utcnow()
        segment = CustomerSegment(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            criteria=criteria,
            color=color or DEFAULT_SEGMENT_COLOR,
            is_active=is_active,
            is_system=is_system,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.db.add(segment)
        await self._commit()
        logger.info(f"Сегмент создан: {segment.id} ({segment.name})")
        return segment

    async def update(self, segment: CustomerSegment, changes: Dict[str, Any]) -> CustomerSegment:
        """Обновление полей сегмента; неизвестные поля игнорируются"""
        for field in UPDATABLE_FIELDS:
            if field in changes:
                setattr(segment, field, changes[field])
        segment.updated_at = _utcnow()
        await self._commit()
        logger.info(f"Сегмент обновлен: {segment.id} ({segment.name}), поля: {sorted(changes)}")
        return segment

    async def delete(self, segment_id: str) -> None:
        """Удаление сегмента вместе с назначениями и аналитикой"""
        segment = await self.find_by_id(segment_id)
        if segment.is_system:
            raise SegmentConflictError("Cannot delete system segments")

        try:
            await self.db.execute(delete(SegmentAnalytics).where(SegmentAnalytics.segment_id == segment_id))
            await self.db.execute(delete(SegmentAssignment).where(SegmentAssignment.segment_id == segment_id))
            await self.db.execute(delete(CustomerSegment).where(CustomerSegment.id == segment_id))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info(f"Сегмент удален: {segment_id} ({segment.name})")

    async def find_by_id(self, segment_id: str) -> CustomerSegment:
        result = await self.db.execute(select(CustomerSegment).where(CustomerSegment.id == segment_id))
        segment = result.scalar_one_or_none()
        if segment is None:
            raise SegmentNotFoundError(segment_id)
        return segment

    async def find_by_name(self, name: str) -> Optional[CustomerSegment]:
        result = await self.db.execute(select(CustomerSegment).where(CustomerSegment.name == name))
        return result.scalars().first()

    async def find_all(
        self,
        is_active: Optional[bool] = True,
        is_system: Optional[bool] = None,
        created_by: Optional[str] = None,
    ) -> List[Tuple[CustomerSegment, int, Optional[float]]]:
        """
        Сегменты с живым числом участников и средним score назначений.

        По умолчанию только активные сегменты; системные идут первыми.
        """
        customer_count = func.count(SegmentAssignment.id).label("customer_count")
        avg_score = func.avg(SegmentAssignment.score).label("avg_assignment_score")

        stmt = (
            select(CustomerSegment, customer_count, avg_score)
            .outerjoin(SegmentAssignment, SegmentAssignment.segment_id == CustomerSegment.id)
            .group_by(CustomerSegment.id)
            .order_by(desc(CustomerSegment.is_system), CustomerSegment.name)
        )
        if is_active is not None:
            stmt = stmt.where(CustomerSegment.is_active == is_active)
        if is_system is not None:
            stmt = stmt.where(CustomerSegment.is_system == is_system)
        if created_by:
            stmt = stmt.where(CustomerSegment.created_by == created_by)

        result = await self.db.execute(stmt)
        return [
            (row[0], int(row.customer_count or 0), float(row.avg_assignment_score) if row.avg_assignment_score is not None else None)
            for row in result.all()
        ]

    async def list_active_segment_ids(self) -> List[str]:
        result = await self.db.execute(
            select(CustomerSegment.id)
            .where(CustomerSegment.is_active == True)
            .order_by(desc(CustomerSegment.is_system), CustomerSegment.name)
        )
        return list(result.scalars().all())

    # ---------- Назначения ----------

    async def count_members(self, segment_id: str) -> int:
        result = await self.db.execute(
            select(func.count(SegmentAssignment.id)).where(SegmentAssignment.segment_id == segment_id)
        )
        return result.scalar() or 0

    async def list_member_ids(self, segment_id: str) -> List[str]:
        result = await self.db.execute(
            select(SegmentAssignment.customer_id).where(SegmentAssignment.segment_id == segment_id)
        )
        return list(result.scalars().all())

    async def replace_assignments(self, segment_id: str, assignments: Sequence[Tuple[str, float]]) -> int:
        """
        Полная замена назначений сегмента одной транзакцией.

        Вызывается только оркестратором пересчета. Строка сегмента блокируется
        (SELECT ... FOR UPDATE), поэтому замены одного сегмента не пересекаются,
        а читатели видят либо старый, либо новый набор целиком.
        """
        assigned_at = _utcnow()
        rows = [
            {
                "id": str(uuid.uuid4()),
                "segment_id": segment_id,
                "customer_id": customer_id,
                "score": score,
                "assigned_at": assigned_at,
            }
            for customer_id, score in assignments
        ]

        try:
            locked = await self.db.execute(
                select(CustomerSegment.id).where(CustomerSegment.id == segment_id).with_for_update()
            )
            if locked.scalar_one_or_none() is None:
                raise SegmentNotFoundError(segment_id)

            await self.db.execute(delete(SegmentAssignment).where(SegmentAssignment.segment_id == segment_id))
            if rows:
                await self.db.execute(SegmentAssignment.__table__.insert(), rows)
            await self.db.execute(
                update(CustomerSegment).where(CustomerSegment.id == segment_id).values(updated_at=assigned_at)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Назначения сегмента {segment_id} заменены: {len(rows)} покупателей")
        return len(rows)

    async def list_members(self, segment_id: str, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        """Участники сегмента с данными покупателя и последними метриками"""
        metrics = latest_metrics_subquery()
        stmt = (
            select(
                SegmentAssignment.customer_id,
                SegmentAssignment.score,
                SegmentAssignment.assigned_at,
                Customer.email,
                Customer.name,
                Customer.deleted,
                Customer.delinquent,
                Customer.created_at,
                func.coalesce(metrics.c.lifetime_value, DEFAULT_LIFETIME_VALUE).label("lifetime_value"),
                func.coalesce(metrics.c.health_score, DEFAULT_HEALTH_SCORE).label("health_score"),
                func.coalesce(metrics.c.churn_risk_score, DEFAULT_CHURN_RISK_SCORE).label("churn_risk_score"),
            )
            .outerjoin(Customer, Customer.customer_id == SegmentAssignment.customer_id)
            .outerjoin(metrics, metrics.c.customer_id == SegmentAssignment.customer_id)
            .where(SegmentAssignment.segment_id == segment_id)
            .order_by(
                desc(SegmentAssignment.score),
                desc(SegmentAssignment.assigned_at),
                SegmentAssignment.customer_id,
            )
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return [
            {
                "customer_id": row.customer_id,
                "email": row.email,
                "name": row.name,
                "deleted": bool(row.deleted) if row.deleted is not None else None,
                "delinquent": bool(row.delinquent) if row.delinquent is not None else None,
                "customer_created_at": row.created_at,
                "assignment_score": row.score,
                "assigned_at": row.assigned_at,
                "lifetime_value": float(row.lifetime_value),
                "health_score": float(row.health_score),
                "churn_risk_score": float(row.churn_risk_score),
            }
            for row in result.all()
        ]

    # ---------- Аналитика ----------

    def _dialect_insert(self, model):
        """INSERT с поддержкой ON CONFLICT для текущего диалекта"""
        dialect = self.db.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite_insert(model)
        return pg_insert(model)

    async def upsert_analytics(self, snapshot: Dict[str, Any]) -> None:
        """Вставка или перезапись строки аналитики (segment_id, metric_date)"""
        now = _utcnow()
        values = {
            "id": str(uuid.uuid4()),
            "segment_id": snapshot["segment_id"],
            "metric_date": snapshot["metric_date"],
            "created_at": now,
            "updated_at": now,
        }
        values.update({field: snapshot[field] for field in ANALYTICS_FIELDS})

        stmt = self._dialect_insert(SegmentAnalytics).values(**values)
        set_ = {field: getattr(stmt.excluded, field) for field in ANALYTICS_FIELDS}
        set_["updated_at"] = now
        stmt = stmt.on_conflict_do_update(index_elements=["segment_id", "metric_date"], set_=set_)

        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def list_analytics(
        self,
        segment_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[SegmentAnalytics]:
        stmt = select(SegmentAnalytics).where(SegmentAnalytics.segment_id == segment_id)
        if date_from:
            stmt = stmt.where(SegmentAnalytics.metric_date >= date_from)
        if date_to:
            stmt = stmt.where(SegmentAnalytics.metric_date <= date_to)
        stmt = stmt.order_by(SegmentAnalytics.metric_date)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
