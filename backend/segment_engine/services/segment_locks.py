"""
Блокировки пересчета по сегментам.

Пересчеты одного сегмента выполняются строго по очереди, разные сегменты
пересчитываются независимо.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict

from segment_engine.services.exceptions import SegmentConflictError

logger = logging.getLogger(__name__)


class SegmentLockRegistry:
    """Реестр asyncio.Lock по ID сегмента"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, segment_id: str) -> asyncio.Lock:
        lock = self._locks.get(segment_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[segment_id] = lock
        return lock

    def is_locked(self, segment_id: str) -> bool:
        lock = self._locks.get(segment_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, segment_id: str, wait: bool = True):
        """
        Удержание блокировки сегмента на время пересчета.

        wait=False: если сегмент уже пересчитывается, SegmentConflictError.
        """
        lock = self.lock_for(segment_id)
        if not wait and lock.locked():
            raise SegmentConflictError(f"Segment {segment_id} is already being recomputed")
        if lock.locked():
            logger.info(f"Сегмент {segment_id} уже пересчитывается, ожидание в очереди")
        async with lock:
            yield

    def forget(self, segment_id: str) -> None:
        """Удаление блокировки удаленного сегмента"""
        lock = self._locks.get(segment_id)
        if lock is not None and not lock.locked():
            del self._locks[segment_id]


# Глобальный реестр для процесса приложения
segment_locks = SegmentLockRegistry()
