"""
API управления сегментами покупателей
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from segment_engine.api.dependencies import get_current_user_email, get_segment_service
from segment_engine.models.customer_segment import CustomerSegment
from segment_engine.models.segment_analytics import SegmentAnalytics
from segment_engine.services.recompute_task_manager import task_manager
from segment_engine.services.segment_service import SegmentService

logger = logging.getLogger(__name__)

router = APIRouter()

TASK_STATUS_LOGS = 20


class SegmentCreateRequest(BaseModel):
    # обязательность name и criteria проверяет сервис (400)
    name: Optional[str] = None
    description: Optional[str] = None
    criteria: Optional[Dict[str, Any]] = None
    color: Optional[str] = None


class SegmentUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    criteria: Optional[Dict[str, Any]] = None
    color: Optional[str] = None
    is_active: Optional[bool] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _segment_to_dict(
    segment: CustomerSegment,
    customer_count: Optional[int] = None,
    avg_assignment_score: Optional[float] = None,
) -> Dict[str, Any]:
    data = {
        "id": segment.id,
        "name": segment.name,
        "description": segment.description,
        "criteria": segment.criteria or {},
        "color": segment.color,
        "is_active": segment.is_active,
        "is_system": segment.is_system,
        "created_by": segment.created_by,
        "created_at": _iso(segment.created_at),
        "updated_at": _iso(segment.updated_at),
    }
    if customer_count is not None:
        data["customer_count"] = customer_count
        data["avg_assignment_score"] = (
            round(avg_assignment_score, 4) if avg_assignment_score is not None else None
        )
    return data


def _member_to_dict(member: Dict[str, Any]) -> Dict[str, Any]:
    return {
        **member,
        "customer_created_at": _iso(member.get("customer_created_at")),
        "assigned_at": _iso(member.get("assigned_at")),
    }


def _analytics_to_dict(row: SegmentAnalytics) -> Dict[str, Any]:
    return {
        "metric_date": row.metric_date.isoformat(),
        "customer_count": row.customer_count,
        "avg_ltv": row.avg_ltv,
        "avg_health_score": row.avg_health_score,
        "avg_churn_risk": row.avg_churn_risk,
        "total_revenue": row.total_revenue,
    }


def _task_to_dict(task: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "task_id": task["id"],
        "type": task["type"],
        "status": task["status"],
        "progress": task["progress"],
        "current_step": task["current_step"],
        "logs": task["logs"][-TASK_STATUS_LOGS:],  # Последние 20 логов
        "result": task.get("result"),
        "error": task.get("error"),
        "created_at": _iso(task["created_at"]),
        "started_at": _iso(task["started_at"]),
        "completed_at": _iso(task["completed_at"]),
    }


def _background_response(task_id: str, message: str) -> Dict[str, Any]:
    return {
        "success": True,
        "message": message,
        "task_id": task_id,
        "status_url": f"/api/segments/tasks/{task_id}",
    }


@router.get("")
async def list_segments(
    is_active: Optional[bool] = Query(True, description="Только активные / неактивные сегменты"),
    is_system: Optional[bool] = Query(None, description="Фильтр по системным сегментам"),
    created_by: Optional[str] = Query(None, description="Автор сегмента"),
    include_inactive: bool = Query(False, description="Активные и неактивные сегменты вместе; is_active игнорируется"),
    service: SegmentService = Depends(get_segment_service),
):
    """Список сегментов с актуальным числом участников"""
    if include_inactive:
        is_active = None
    rows = await service.list_segments(is_active=is_active, is_system=is_system, created_by=created_by)
    return {
        "segments": [_segment_to_dict(segment, count, avg_score) for segment, count, avg_score in rows],
        "total": len(rows),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_segment(
    request: SegmentCreateRequest,
    service: SegmentService = Depends(get_segment_service),
    current_user_email: Optional[str] = Depends(get_current_user_email),
):
    """Создание сегмента с немедленным назначением покупателей"""
    segment, assigned = await service.create_segment(
        name=request.name,
        criteria=request.criteria,
        description=request.description,
        color=request.color,
        created_by=current_user_email,
    )
    return {
        "success": True,
        "message": "Сегмент создан",
        "segment": _segment_to_dict(segment),
        "assigned_customers": assigned,
    }


@router.post("/refresh-all")
async def refresh_all_segments(
    background: bool = Query(False, description="Запустить пересчет в фоне"),
    service: SegmentService = Depends(get_segment_service),
):
    """Пересчет назначений и аналитики всех активных сегментов"""
    if not background:
        result = await service.refresh_all()
        return {
            "success": True,
            "message": f"Пересчитано сегментов: {result.processed} из {result.total}",
            "processed": result.processed,
            **result.to_dict(),
        }

    async def job(task_id: str) -> Dict[str, Any]:
        task_manager.update_progress(task_id, 1, "Пересчет сегментов...", "Загрузка активных сегментов")

        def on_progress(done: int, total: int, segment_id: str) -> None:
            progress = int(done / total * 99) if total else 99
            task_manager.update_progress(
                task_id,
                progress,
                f"Пересчитано {done} из {total}",
                f"Сегмент {segment_id} обработан",
            )

        result = await service.refresh_all(progress_callback=on_progress)
        return result.to_dict()

    task_id = task_manager.launch("refresh_all", {}, job)
    return _background_response(task_id, "Пересчет всех сегментов запущен в фоне")


@router.get("/tasks/{task_id}")
async def get_task_status(task_id: str):
    """Статус фоновой задачи пересчета"""
    task = task_manager.get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Задача не найдена")
    return _task_to_dict(task)


@router.delete("/tasks/{task_id}")
async def cancel_task(task_id: str):
    """Отмена фоновой задачи; назначения остаются в состоянии до пересчета"""
    task = task_manager.get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Задача не найдена")
    if not task_manager.cancel(task_id):
        raise HTTPException(status_code=409, detail=f"Задача уже завершена: {task['status']}")
    return {"success": True, "message": "Задача отменена", "task_id": task_id}


@router.get("/{segment_id}")
async def get_segment(
    segment_id: str,
    service: SegmentService = Depends(get_segment_service),
):
    """Сегмент, первые участники и аналитика за последние 30 дней"""
    detail = await service.get_segment_detail(segment_id)
    return {
        "segment": _segment_to_dict(detail["segment"]),
        "customer_count": detail["customer_count"],
        "members": [_member_to_dict(member) for member in detail["members"]],
        "analytics": [_analytics_to_dict(row) for row in detail["analytics"]],
    }


@router.get("/{segment_id}/members")
async def get_segment_members(
    segment_id: str,
    page: int = Query(1, description="Номер страницы, с 1"),
    limit: int = Query(20, description="Размер страницы, 1..100"),
    service: SegmentService = Depends(get_segment_service),
):
    """Участники сегмента постранично"""
    result = await service.list_members(segment_id, page=page, limit=limit)
    return {
        "segment": {"id": result["segment"].id, "name": result["segment"].name},
        "members": [_member_to_dict(member) for member in result["members"]],
        "pagination": result["pagination"],
    }


@router.get("/{segment_id}/analytics")
async def get_segment_analytics(
    segment_id: str,
    date_from: Optional[date] = Query(None, description="Начальная дата (YYYY-MM-DD)"),
    date_to: Optional[date] = Query(None, description="Конечная дата (YYYY-MM-DD)"),
    service: SegmentService = Depends(get_segment_service),
):
    """Дневная аналитика сегмента за период"""
    segment, analytics, period_from, period_to = await service.get_analytics(segment_id, date_from, date_to)
    return {
        "segment": {"id": segment.id, "name": segment.name},
        "analytics": [_analytics_to_dict(row) for row in analytics],
        "date_range": {"from": period_from.isoformat(), "to": period_to.isoformat()},
    }


@router.put("/{segment_id}")
async def update_segment(
    segment_id: str,
    request: SegmentUpdateRequest,
    service: SegmentService = Depends(get_segment_service),
):
    """Обновление сегмента; пересчет при изменении критериев или активности"""
    segment, assigned = await service.update_segment(segment_id, request.model_dump(exclude_unset=True))
    return {
        "success": True,
        "message": "Сегмент обновлен",
        "segment": _segment_to_dict(segment),
        "recomputed": assigned is not None,
        "assigned_customers": assigned,
    }


@router.delete("/{segment_id}")
async def delete_segment(
    segment_id: str,
    service: SegmentService = Depends(get_segment_service),
):
    """Удаление сегмента вместе с назначениями и аналитикой"""
    await service.delete_segment(segment_id)
    return {"success": True, "message": "Сегмент удален", "segment_id": segment_id}


@router.post("/{segment_id}/refresh")
async def refresh_segment(
    segment_id: str,
    background: bool = Query(False, description="Запустить пересчет в фоне"),
    wait: bool = Query(True, description="Ждать завершения текущего пересчета сегмента"),
    service: SegmentService = Depends(get_segment_service),
):
    """Ручной пересчет одного сегмента"""
    if not background:
        assigned = await service.refresh_segment(segment_id, wait=wait)
        return {
            "success": True,
            "message": f"Сегмент пересчитан: {assigned} покупателей",
            "segment_id": segment_id,
            "assigned_customers": assigned,
        }

    # 404 до запуска задачи
    await service.get_segment(segment_id)

    async def job(task_id: str) -> Dict[str, Any]:
        task_manager.update_progress(task_id, 10, "Пересчет сегмента...", f"Сегмент {segment_id}")
        assigned = await service.refresh_segment(segment_id, wait=wait)
        return {"segment_id": segment_id, "assigned_customers": assigned}

    task_id = task_manager.launch("refresh_segment", {"segment_id": segment_id}, job)
    return _background_response(task_id, "Пересчет сегмента запущен в фоне")
