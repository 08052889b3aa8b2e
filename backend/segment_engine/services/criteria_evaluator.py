"""
Оценка соответствия покупателя критериям сегмента.

Чистые функции без I/O: на вход критерии сегмента и снимок метрик покупателя,
на выход score в (0, 1] или "не подходит".

Каждая заданная граница критериев - отдельный критерий. Невыполненная граница
умножает score на штраф своего класса. Покупатель попадает в сегмент, если
выполнено не меньше MATCH_THRESHOLD от всех заданных критериев.
Фильтр status применяется при выборке кандидатов, поэтому здесь всегда засчитан.
"""
import math
import os
import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from segment_engine.services.customer_metrics_source import CUSTOMER_STATUSES, CustomerMetricsSnapshot
from segment_engine.services.exceptions import SegmentValidationError


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


# Штрафы за невыполненную границу по классам критериев
DEFAULT_PENALTIES: Dict[str, float] = {
    "ltv": _env_float("SEGMENT_PENALTY_LTV", "0.8"),
    "health_score": _env_float("SEGMENT_PENALTY_HEALTH_SCORE", "0.9"),
    "churn_risk": _env_float("SEGMENT_PENALTY_CHURN_RISK", "0.8"),
    "subscription_count": _env_float("SEGMENT_PENALTY_SUBSCRIPTION_COUNT", "0.7"),
    "account_age": _env_float("SEGMENT_PENALTY_ACCOUNT_AGE", "0.9"),
}

MATCH_THRESHOLD = _env_float("SEGMENT_MATCH_THRESHOLD", "0.7")

# ключ критерия -> (атрибут снимка метрик, сравнение, класс штрафа)
BOUND_CRITERIA: Dict[str, Tuple[str, Callable[[Any, Any], bool], str]] = {
    "ltv_min": ("lifetime_value", operator.ge, "ltv"),
    "ltv_max": ("lifetime_value", operator.le, "ltv"),
    "health_score_min": ("health_score", operator.ge, "health_score"),
    "health_score_max": ("health_score", operator.le, "health_score"),
    "churn_risk_min": ("churn_risk_score", operator.ge, "churn_risk"),
    "churn_risk_max": ("churn_risk_score", operator.le, "churn_risk"),
    "subscription_count_min": ("active_subscription_count", operator.ge, "subscription_count"),
    "days_since_created_max": ("days_since_created", operator.le, "account_age"),
}

CRITERIA_KEYS = frozenset(BOUND_CRITERIA) | {"status"}


@dataclass(frozen=True)
class ScoreResult:
    score: float
    matched: bool
    match_ratio: float


NO_MATCH_SCORE = 0.0


def _is_present(criteria: Mapping[str, Any], key: str) -> bool:
    return criteria.get(key) is not None


def score_customer(
    criteria: Mapping[str, Any],
    metrics: CustomerMetricsSnapshot,
    penalties: Optional[Mapping[str, float]] = None,
    threshold: Optional[float] = None,
) -> ScoreResult:
    """
    Score покупателя для сегмента.

    Возвращает ScoreResult(matched=False, score=0) если доля выполненных
    критериев ниже порога, иначе min(1.0, score).
    """
    penalty_factors = dict(DEFAULT_PENALTIES)
    if penalties:
        penalty_factors.update(penalties)
    min_ratio = MATCH_THRESHOLD if threshold is None else threshold

    score = 1.0
    match_count = 0
    total_criteria = 0

    for key, (attribute, compare, penalty_class) in BOUND_CRITERIA.items():
        if not _is_present(criteria, key):
            continue
        total_criteria += 1
        value = getattr(metrics, attribute, None)
        # Неизвестное значение метрики границу не выполняет. Это касается и
        # days_since_created_max: покупатель без created_at не считается "новым"
        if value is not None and compare(value, criteria[key]):
            match_count += 1
        else:
            score *= penalty_factors[penalty_class]

    if _is_present(criteria, "status"):
        total_criteria += 1
        match_count += 1

    match_ratio = match_count / total_criteria if total_criteria else 1.0
    if match_ratio < min_ratio:
        return ScoreResult(score=NO_MATCH_SCORE, matched=False, match_ratio=match_ratio)

    return ScoreResult(score=min(1.0, score), matched=True, match_ratio=match_ratio)


def compute_assignments(
    criteria: Mapping[str, Any],
    candidates: List[CustomerMetricsSnapshot],
    penalties: Optional[Mapping[str, float]] = None,
    threshold: Optional[float] = None,
) -> List[Tuple[str, float]]:
    """Список (customer_id, score) для всех подходящих кандидатов"""
    assignments = []
    for candidate in candidates:
        result = score_customer(criteria, candidate, penalties=penalties, threshold=threshold)
        if result.matched and result.score > 0:
            assignments.append((candidate.customer_id, result.score))
    return assignments


def validate_criteria(criteria: Any) -> Dict[str, Any]:
    """
    Проверка документа критериев перед сохранением сегмента.

    Возвращает копию без ключей со значением None.
    """
    if not isinstance(criteria, dict):
        raise SegmentValidationError("Criteria must be an object")

    unknown = sorted(set(criteria) - CRITERIA_KEYS)
    if unknown:
        raise SegmentValidationError(f"Unknown criteria keys: {', '.join(unknown)}")

    cleaned: Dict[str, Any] = {}
    for key, value in criteria.items():
        if value is None:
            continue
        if key == "status":
            if value not in CUSTOMER_STATUSES:
                raise SegmentValidationError(
                    f"Invalid status '{value}', expected one of: {', '.join(CUSTOMER_STATUSES)}"
                )
        elif isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise SegmentValidationError(f"Criteria '{key}' must be a number")
        cleaned[key] = value

    for lower, upper in (("ltv_min", "ltv_max"), ("health_score_min", "health_score_max"),
                         ("churn_risk_min", "churn_risk_max")):
        if lower in cleaned and upper in cleaned and cleaned[lower] > cleaned[upper]:
            raise SegmentValidationError(f"'{lower}' must not be greater than '{upper}'")

    return cleaned
