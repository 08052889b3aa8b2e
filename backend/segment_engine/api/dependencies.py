"""
Dependency functions для API сегментов
"""
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import async_sessionmaker

from segment_engine.database.connection import AsyncSessionLocal
from segment_engine.services.segment_locks import segment_locks
from segment_engine.services.segment_service import SegmentService


def get_session_factory() -> async_sessionmaker:
    """Фабрика сессий приложения; в тестах подменяется через dependency_overrides"""
    return AsyncSessionLocal


def get_segment_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> SegmentService:
    return SegmentService(session_factory, locks=segment_locks)


def get_current_user_email(x_user_email: Optional[str] = Header(None)) -> Optional[str]:
    """Идентификатор вызывающего пользователя для поля created_by"""
    if x_user_email and x_user_email.strip():
        return x_user_email.strip()
    return None
