"""
Ошибки движка сегментации
"""


class SegmentEngineError(Exception):
    """Базовая ошибка движка сегментации."""
    pass


class SegmentNotFoundError(SegmentEngineError):
    """Сегмент с указанным ID не существует."""

    def __init__(self, segment_id: str):
        self.segment_id = segment_id
        super().__init__(f"Segment not found: {segment_id}")


class SegmentConflictError(SegmentEngineError):
    """Операция запрещена для системного сегмента или сегмент уже пересчитывается."""
    pass


class SegmentValidationError(SegmentEngineError):
    """Некорректные данные сегмента или критериев."""
    pass


class SourceUnavailableError(SegmentEngineError):
    """Источник метрик покупателей недоступен."""
    pass
