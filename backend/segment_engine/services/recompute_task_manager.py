"""
Менеджер фоновых задач пересчета сегментов с отслеживанием прогресса
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from datetime import datetime, timezone
from uuid import uuid4
from enum import Enum

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)

MAX_TASK_LOGS = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecomputeTaskManager:
    """Менеджер для управления фоновыми задачами пересчета"""

    def __init__(self):
        self.tasks: Dict[str, Dict[str, Any]] = {}
        self._handles: Dict[str, asyncio.Task] = {}

    def create_task(self, task_type: str, params: Dict[str, Any]) -> str:
        """Создание новой задачи"""
        task_id = str(uuid4())
        self.tasks[task_id] = {
            "id": task_id,
            "type": task_type,
            "status": TaskStatus.PENDING,
            "progress": 0,
            "current_step": "Инициализация...",
            "logs": [],
            "params": params,
            "result": None,
            "error": None,
            "created_at": _utcnow(),
            "started_at": None,
            "completed_at": None,
        }
        logger.info(f"Создана задача пересчета {task_id} типа {task_type}")
        return task_id

    def get_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Получение статуса задачи"""
        return self.tasks.get(task_id)

    def update_progress(self, task_id: str, progress: int, step: str, log: Optional[str] = None):
        """Обновление прогресса задачи"""
        task = self.tasks.get(task_id)
        if not task:
            return
        task["progress"] = progress
        task["current_step"] = step
        if log:
            task["logs"].append({
                "timestamp": _utcnow().isoformat(),
                "message": log
            })
            if len(task["logs"]) > MAX_TASK_LOGS:
                task["logs"] = task["logs"][-MAX_TASK_LOGS:]

    def start_task(self, task_id: str):
        """Запуск задачи"""
        if task_id in self.tasks:
            self.tasks[task_id]["status"] = TaskStatus.RUNNING
            self.tasks[task_id]["started_at"] = _utcnow()

    def complete_task(self, task_id: str, result: Dict[str, Any]):
        """Завершение задачи успешно"""
        if task_id in self.tasks:
            self.tasks[task_id]["status"] = TaskStatus.COMPLETED
            self.tasks[task_id]["progress"] = 100
            self.tasks[task_id]["current_step"] = "Завершено"
            self.tasks[task_id]["result"] = result
            self.tasks[task_id]["completed_at"] = _utcnow()

    def fail_task(self, task_id: str, error: str):
        """Завершение задачи с ошибкой"""
        if task_id in self.tasks:
            self.tasks[task_id]["status"] = TaskStatus.FAILED
            self.tasks[task_id]["error"] = error
            self.tasks[task_id]["current_step"] = f"Ошибка: {error}"
            self.tasks[task_id]["completed_at"] = _utcnow()

    def cancel_task_record(self, task_id: str):
        if task_id in self.tasks:
            self.tasks[task_id]["status"] = TaskStatus.CANCELLED
            self.tasks[task_id]["current_step"] = "Отменено"
            self.tasks[task_id]["completed_at"] = _utcnow()

    def launch(
        self,
        task_type: str,
        params: Dict[str, Any],
        job: Callable[[str], Awaitable[Dict[str, Any]]],
    ) -> str:
        """
        Создать задачу и запустить job(task_id) в фоне.

        job возвращает словарь результата; исключение переводит задачу в failed.
        """
        task_id = self.create_task(task_type, params)

        async def _runner():
            self.start_task(task_id)
            try:
                result = await job(task_id)
            except asyncio.CancelledError:
                self.cancel_task_record(task_id)
                logger.warning(f"Задача пересчета {task_id} отменена")
                raise
            except Exception as e:
                logger.error(f"Ошибка в задаче пересчета {task_id}: {e}", exc_info=True)
                self.fail_task(task_id, str(e))
            else:
                self.complete_task(task_id, result)

        handle = asyncio.create_task(_runner())
        handle.add_done_callback(lambda _: self._handles.pop(task_id, None))
        self._handles[task_id] = handle
        return task_id

    def cancel(self, task_id: str) -> bool:
        """Отмена выполняющейся задачи; False если задача уже завершена"""
        handle = self._handles.get(task_id)
        if handle is None or handle.done():
            return False
        handle.cancel()
        self.cancel_task_record(task_id)
        return True

    async def wait(self, task_id: str) -> None:
        handle = self._handles.get(task_id)
        if handle is not None:
            await asyncio.gather(handle, return_exceptions=True)

    def cleanup_old_tasks(self, max_age_hours: int = 24):
        """Очистка старых задач"""
        cutoff = _utcnow().timestamp() - (max_age_hours * 3600)
        to_remove = []
        for task_id, task in self.tasks.items():
            if task["status"] in FINISHED_STATUSES:
                completed = task.get("completed_at")
                if completed and completed.timestamp() < cutoff:
                    to_remove.append(task_id)

        for task_id in to_remove:
            del self.tasks[task_id]
            logger.info(f"Удалена старая задача {task_id}")


# Глобальный экземпляр менеджера
task_manager = RecomputeTaskManager()
