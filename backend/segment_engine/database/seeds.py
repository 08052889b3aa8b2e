"""
Системные сегменты покупателей
"""
import logging
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from segment_engine.models.customer_segment import CustomerSegment
from segment_engine.services.criteria_evaluator import validate_criteria
from segment_engine.services.segment_repository import SegmentRepository

logger = logging.getLogger(__name__)


SYSTEM_SEGMENTS = [
    {
        "name": "High Value",
        "description": "Покупатели с высоким LTV и хорошим здоровьем аккаунта",
        "criteria": {"status": "active", "ltv_min": 1000, "health_score_min": 70},
        "color": "#28a745",
    },
    {
        "name": "At Risk",
        "description": "Активные покупатели с высоким риском оттока",
        "criteria": {"status": "active", "churn_risk_min": 0.7},
        "color": "#dc3545",
    },
    {
        "name": "New Customers",
        "description": "Аккаунты моложе 30 дней",
        "criteria": {"status": "active", "days_since_created_max": 30},
        "color": "#17a2b8",
    },
    {
        "name": "Healthy",
        "description": "Высокий health score и низкий риск оттока",
        "criteria": {"status": "active", "health_score_min": 80, "churn_risk_max": 0.3},
        "color": "#20c997",
    },
    {
        "name": "Delinquent",
        "description": "Покупатели с просроченными платежами",
        "criteria": {"status": "delinquent"},
        "color": "#fd7e14",
    },
]


async def seed_system_segments(db: AsyncSession) -> List[CustomerSegment]:
    """Создание системных сегментов; существующие (по имени) не трогаются"""
    repo = SegmentRepository(db)
    created = []
    for segment_data in SYSTEM_SEGMENTS:
        existing = await repo.find_by_name(segment_data["name"])
        if existing:
            continue
        segment = await repo.create(
            name=segment_data["name"],
            criteria=validate_criteria(segment_data["criteria"]),
            description=segment_data["description"],
            color=segment_data["color"],
            is_system=True,
            created_by="system",
        )
        created.append(segment)

    logger.info(f"Системные сегменты: создано {len(created)} из {len(SYSTEM_SEGMENTS)}")
    return created
