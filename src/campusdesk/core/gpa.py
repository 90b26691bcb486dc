from dataclasses import dataclass
from typing import Iterable, Tuple, Union


@dataclass(frozen=True)
class CourseResult:
    grade_points: float
    credits: int


CreditPair = Union[CourseResult, Tuple[float, int]]


def _unpack(item: CreditPair) -> Tuple[float, int]:
    if isinstance(item, CourseResult):
        return item.grade_points, item.credits
    grade_points, credits = item
    return grade_points, credits


def compute_weighted_average(pairs: Iterable[CreditPair]) -> float:
    """
    pairs: iterable of (grade_points, credits) or CourseResult
    GPA = Σ(grade_points * credits) / Σ(credits), 0.0 when no credits

    Returned at full precision; rounding is left to the caller.
    """
    weighted_sum = 0.0
    total_credits = 0

    for item in pairs:
        grade_points, credits = _unpack(item)
        weighted_sum += grade_points * credits
        total_credits += credits

    if total_credits <= 0:
        return 0.0
    return weighted_sum / total_credits


def calculate_cgpa(term_results: Iterable[Iterable[CreditPair]]) -> float:
    return compute_weighted_average(item for term in term_results for item in term)
