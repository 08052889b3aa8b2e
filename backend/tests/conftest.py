"""
Общие фикстуры: SQLite-база на диске для каждого теста, фабрика сессий,
заполнение таблиц покупателей и HTTP-клиент приложения.
"""
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import httpx
import pytest

import segment_engine.models  # noqa: F401  регистрирует таблицы в Base.metadata
from segment_engine.api.dependencies import get_segment_service
from segment_engine.database.connection import Base, make_engine, make_session_factory
from segment_engine.main import app
from segment_engine.models.customer import Customer, CustomerMetric, CustomerSubscription
from segment_engine.services.customer_metrics_source import CustomerMetricsSource
from segment_engine.services.segment_locks import SegmentLockRegistry
from segment_engine.services.segment_service import SegmentService


@pytest.fixture
async def engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'segments.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def metrics_source(session_factory):
    return CustomerMetricsSource(session_factory)


@pytest.fixture
def locks():
    return SegmentLockRegistry()


@pytest.fixture
def service(session_factory, metrics_source, locks):
    return SegmentService(session_factory, metrics_source=metrics_source, locks=locks, max_workers=1)


@pytest.fixture
def add_customer(session_factory):
    """Добавить покупателя с метриками и активными подписками"""

    async def _add(
        customer_id: str,
        ltv: Optional[float] = None,
        health: Optional[float] = None,
        churn: Optional[float] = None,
        metric_date: Optional[date] = None,
        deleted: bool = False,
        delinquent: bool = False,
        created_days_ago: Optional[int] = 10,
        active_subscriptions: int = 0,
        email: Optional[str] = None,
    ) -> None:
        created_at = None
        if created_days_ago is not None:
            created_at = datetime.now(timezone.utc) - timedelta(days=created_days_ago)

        async with session_factory() as session:
            session.add(Customer(
                customer_id=customer_id,
                email=email or f"{customer_id}@example.com",
                name=customer_id.upper(),
                deleted=deleted,
                delinquent=delinquent,
                created_at=created_at,
            ))
            if ltv is not None or health is not None or churn is not None:
                session.add(CustomerMetric(
                    customer_id=customer_id,
                    metric_date=metric_date or date.today(),
                    lifetime_value=ltv,
                    health_score=health,
                    churn_risk_score=churn,
                ))
            for _ in range(active_subscriptions):
                session.add(CustomerSubscription(
                    id=f"sub_{uuid.uuid4().hex}",
                    customer_id=customer_id,
                    status="active",
                ))
            await session.commit()

    return _add


@pytest.fixture
def add_metrics(session_factory):
    """Добавить дополнительный дневной снимок метрик покупателя"""

    async def _add(customer_id: str, metric_date: date, ltv=None, health=None, churn=None) -> None:
        async with session_factory() as session:
            session.add(CustomerMetric(
                customer_id=customer_id,
                metric_date=metric_date,
                lifetime_value=ltv,
                health_score=health,
                churn_risk_score=churn,
            ))
            await session.commit()

    return _add


@pytest.fixture
async def client(session_factory, locks):
    app.dependency_overrides[get_segment_service] = lambda: SegmentService(
        session_factory, locks=locks, max_workers=1
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()
