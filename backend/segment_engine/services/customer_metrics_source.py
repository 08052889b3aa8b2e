"""
Источник метрик покупателей для сегментации.

Читает последний снимок customer_metrics по каждому покупателю, число активных
подписок и статусные флаги. Только чтение: таблицы наполняет синхронизация
с биллингом.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from segment_engine.models.customer import Customer, CustomerMetric, CustomerSubscription
from segment_engine.services.exceptions import SourceUnavailableError

logger = logging.getLogger(__name__)


CUSTOMER_STATUSES = ("active", "deleted", "delinquent")

# Значения по умолчанию, если у покупателя нет строки метрик
DEFAULT_LIFETIME_VALUE = 0.0
DEFAULT_HEALTH_SCORE = 50.0
DEFAULT_CHURN_RISK_SCORE = 0.5
DEFAULT_SUBSCRIPTION_COUNT = 0

# Ограничение размера IN (...) в одном запросе
ID_BATCH_SIZE = 500


@dataclass(frozen=True)
class CustomerMetricsSnapshot:
    customer_id: str
    lifetime_value: float = DEFAULT_LIFETIME_VALUE
    health_score: float = DEFAULT_HEALTH_SCORE
    churn_risk_score: float = DEFAULT_CHURN_RISK_SCORE
    active_subscription_count: int = DEFAULT_SUBSCRIPTION_COUNT
    days_since_created: Optional[int] = None
    deleted: bool = False
    delinquent: bool = False


def latest_metrics_subquery(as_of: Optional[date] = None):
    """
    Последний снимок метрик по каждому покупателю (на дату as_of включительно).

    Колонки: customer_id, lifetime_value, health_score, churn_risk_score.
    """
    latest_date_stmt = select(
        CustomerMetric.customer_id.label("customer_id"),
        func.max(CustomerMetric.metric_date).label("latest_date"),
    )
    if as_of is not None:
        latest_date_stmt = latest_date_stmt.where(CustomerMetric.metric_date <= as_of)
    latest_date = latest_date_stmt.group_by(CustomerMetric.customer_id).subquery("latest_metric_date")

    return (
        select(
            CustomerMetric.customer_id.label("customer_id"),
            func.max(CustomerMetric.lifetime_value).label("lifetime_value"),
            func.max(CustomerMetric.health_score).label("health_score"),
            func.max(CustomerMetric.churn_risk_score).label("churn_risk_score"),
        )
        .join(
            latest_date,
            and_(
                CustomerMetric.customer_id == latest_date.c.customer_id,
                CustomerMetric.metric_date == latest_date.c.latest_date,
            ),
        )
        .group_by(CustomerMetric.customer_id)
        .subquery("latest_metrics")
    )


def active_subscriptions_subquery():
    return (
        select(
            CustomerSubscription.customer_id.label("customer_id"),
            func.count().label("subscription_count"),
        )
        .where(CustomerSubscription.status == "active")
        .group_by(CustomerSubscription.customer_id)
        .subquery("active_subscriptions")
    )


def status_filter(status: Optional[str]):
    """Условие WHERE для фильтра status из критериев (None - без фильтра)"""
    if status == "active":
        return and_(Customer.deleted == False, Customer.delinquent == False)
    if status == "deleted":
        return Customer.deleted == True
    if status == "delinquent":
        return Customer.delinquent == True
    return None


def days_since(created_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    if created_at is None:
        return None
    now_utc = now or datetime.now(timezone.utc)
    # Нормализуем дату к UTC aware
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    else:
        created_at = created_at.astimezone(timezone.utc)
    return (now_utc - created_at).days


def _value_or_default(value, default):
    return default if value is None else value


class CustomerMetricsSource:
    """Чтение метрик покупателей; каждый запрос в отдельной сессии"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    def _snapshot_query(self, as_of: Optional[date] = None):
        metrics = latest_metrics_subquery(as_of)
        subscriptions = active_subscriptions_subquery()
        stmt = (
            select(
                Customer.customer_id,
                Customer.created_at,
                Customer.deleted,
                Customer.delinquent,
                metrics.c.lifetime_value,
                metrics.c.health_score,
                metrics.c.churn_risk_score,
                subscriptions.c.subscription_count,
            )
            .outerjoin(metrics, Customer.customer_id == metrics.c.customer_id)
            .outerjoin(subscriptions, Customer.customer_id == subscriptions.c.customer_id)
        )
        return stmt

    def _to_snapshot(self, row, now: datetime) -> CustomerMetricsSnapshot:
        return CustomerMetricsSnapshot(
            customer_id=row.customer_id,
            lifetime_value=float(_value_or_default(row.lifetime_value, DEFAULT_LIFETIME_VALUE)),
            health_score=float(_value_or_default(row.health_score, DEFAULT_HEALTH_SCORE)),
            churn_risk_score=float(_value_or_default(row.churn_risk_score, DEFAULT_CHURN_RISK_SCORE)),
            active_subscription_count=int(_value_or_default(row.subscription_count, DEFAULT_SUBSCRIPTION_COUNT)),
            days_since_created=days_since(row.created_at, now),
            deleted=bool(row.deleted),
            delinquent=bool(row.delinquent),
        )

    async def fetch_candidates(self, status: Optional[str] = None) -> List[CustomerMetricsSnapshot]:
        """
        Пул кандидатов для сегмента.

        В запрос уходит только фильтр status, числовые границы проверяет
        criteria_evaluator.
        """
        stmt = self._snapshot_query()
        condition = status_filter(status)
        if condition is not None:
            stmt = stmt.where(condition)
        stmt = stmt.order_by(Customer.customer_id)

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as e:
            logger.error(f"Источник метрик недоступен (status={status}): {e}")
            raise SourceUnavailableError(f"Customer metrics source unavailable: {e}") from e

        now = datetime.now(timezone.utc)
        return [self._to_snapshot(row, now) for row in rows]

    async def fetch_for_customers(
        self,
        customer_ids: Iterable[str],
        as_of: Optional[date] = None,
    ) -> Dict[str, CustomerMetricsSnapshot]:
        """
        Метрики для конкретных покупателей на дату as_of.

        Покупатели, которых нет в таблице customers, в результат не попадают.
        """
        ids = list(dict.fromkeys(customer_ids))
        snapshots: Dict[str, CustomerMetricsSnapshot] = {}
        if not ids:
            return snapshots

        now = datetime.now(timezone.utc)
        try:
            async with self.session_factory() as session:
                for start in range(0, len(ids), ID_BATCH_SIZE):
                    batch = ids[start:start + ID_BATCH_SIZE]
                    stmt = self._snapshot_query(as_of).where(Customer.customer_id.in_(batch))
                    result = await session.execute(stmt)
                    for row in result.all():
                        snapshots[row.customer_id] = self._to_snapshot(row, now)
        except SQLAlchemyError as e:
            logger.error(f"Источник метрик недоступен ({len(ids)} покупателей): {e}")
            raise SourceUnavailableError(f"Customer metrics source unavailable: {e}") from e

        return snapshots
