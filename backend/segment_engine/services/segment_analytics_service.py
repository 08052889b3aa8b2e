"""
Дневная аналитика сегментов
"""
import logging
from datetime import date
from typing import Any, Dict, Iterable, Mapping, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from segment_engine.services.customer_metrics_source import (
    CustomerMetricsSource,
    CustomerMetricsSnapshot,
    DEFAULT_LIFETIME_VALUE,
    DEFAULT_HEALTH_SCORE,
    DEFAULT_CHURN_RISK_SCORE,
)
from segment_engine.services.segment_repository import SegmentRepository

logger = logging.getLogger(__name__)


def compute_snapshot(
    segment_id: str,
    metric_date: date,
    member_ids: Iterable[str],
    metrics_by_customer: Mapping[str, CustomerMetricsSnapshot],
) -> Dict[str, Any]:
    """
    Агрегаты по участникам сегмента.

    Для участника без метрик берутся значения по умолчанию (LTV 0, health 50,
    churn risk 0.5). Пустой сегмент дает те же значения по умолчанию в средних.
    """
    ltv_values = []
    health_values = []
    churn_values = []

    for customer_id in member_ids:
        snapshot = metrics_by_customer.get(customer_id)
        if snapshot is None:
            snapshot = CustomerMetricsSnapshot(customer_id=customer_id)
        ltv_values.append(snapshot.lifetime_value)
        health_values.append(snapshot.health_score)
        churn_values.append(snapshot.churn_risk_score)

    customer_count = len(ltv_values)
    if customer_count:
        total_revenue = sum(ltv_values)
        avg_ltv = total_revenue / customer_count
        avg_health_score = sum(health_values) / customer_count
        avg_churn_risk = sum(churn_values) / customer_count
    else:
        total_revenue = 0.0
        avg_ltv = DEFAULT_LIFETIME_VALUE
        avg_health_score = DEFAULT_HEALTH_SCORE
        avg_churn_risk = DEFAULT_CHURN_RISK_SCORE

    return {
        "segment_id": segment_id,
        "metric_date": metric_date,
        "customer_count": customer_count,
        "avg_ltv": round(avg_ltv, 2),
        "avg_health_score": round(avg_health_score, 2),
        "avg_churn_risk": round(avg_churn_risk, 4),
        "total_revenue": round(total_revenue, 2),
    }


class SegmentAnalyticsService:
    """Пересчет строки аналитики сегмента за день"""

    def __init__(self, session_factory: async_sessionmaker, metrics_source: CustomerMetricsSource):
        self.session_factory = session_factory
        self.metrics_source = metrics_source

    async def update_analytics(self, segment_id: str, metric_date: Optional[date] = None) -> Dict[str, Any]:
        """
        Пересчитать и сохранить аналитику сегмента за metric_date (по умолчанию сегодня).

        Повторный вызов за тот же день перезаписывает строку.
        """
        target_date = metric_date or date.today()

        async with self.session_factory() as session:
            repo = SegmentRepository(session)
            await repo.find_by_id(segment_id)
            member_ids = await repo.list_member_ids(segment_id)

        metrics = await self.metrics_source.fetch_for_customers(member_ids, as_of=target_date)
        snapshot = compute_snapshot(segment_id, target_date, member_ids, metrics)

        async with self.session_factory() as session:
            await SegmentRepository(session).upsert_analytics(snapshot)

        logger.info(
            f"Аналитика сегмента {segment_id} за {target_date}: "
            f"{snapshot['customer_count']} покупателей, средний LTV {snapshot['avg_ltv']}"
        )
        return snapshot
