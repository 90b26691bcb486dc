from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Tuple


# Evaluated top-down; the first threshold the percentage reaches wins.
GRADE_BANDS: List[Tuple[float, str, float]] = [
    (95, "A+", 4.0),
    (90, "A", 4.0),
    (85, "A-", 3.7),
    (80, "B+", 3.3),
    (75, "B", 3.0),
    (70, "B-", 2.7),
    (65, "C+", 2.3),
    (60, "C", 2.0),
    (55, "C-", 1.7),
    (50, "D", 1.0),
]

FAILING_GRADE: Tuple[str, float] = ("F", 0.0)

# Letters a stored grade may carry. D+, D-, I and W are never produced by
# GRADE_BANDS; the two lists are kept as they are.
LETTER_GRADES: Tuple[str, ...] = (
    "A+", "A", "A-",
    "B+", "B", "B-",
    "C+", "C", "C-",
    "D+", "D", "D-",
    "F", "I", "W",
)

ASSESSMENT_TYPES: Tuple[str, ...] = (
    "quiz",
    "midterm",
    "final",
    "assignment",
    "project",
    "lab",
    "presentation",
)

GRADE_STATUSES: Tuple[str, ...] = ("draft", "published", "finalized")


@dataclass(frozen=True)
class AssessmentResult:
    percentage: float
    letter_grade: str
    grade_points: float
    weightage: float


def to_percentage(score: float, max_score: float) -> float:
    if max_score <= 0:
        return 0.0
    return (score / max_score) * 100


def letter_grade_for_percentage(percentage: float) -> Tuple[str, float]:
    for threshold, letter, points in GRADE_BANDS:
        if percentage >= threshold:
            return letter, points
    return FAILING_GRADE


def compute_letter_grade(score: float, max_score: float) -> Tuple[str, float]:
    """
    Map a raw score to (letter_grade, grade_points).

    Out-of-range scores are neither clamped nor rejected; input validation
    happens at the write boundary.
    """
    return letter_grade_for_percentage(to_percentage(score, max_score))


def grade_assessment(score: float, max_score: float, weightage: float = 0.0) -> AssessmentResult:
    percentage = to_percentage(score, max_score)
    letter, points = letter_grade_for_percentage(percentage)
    return AssessmentResult(
        percentage=percentage,
        letter_grade=letter,
        grade_points=points,
        weightage=float(weightage),
    )


def summarize_course_grades(records: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    distribution: Dict[str, int] = {letter: 0 for letter in LETTER_GRADES}
    by_type: Dict[str, List[float]] = {}
    students = set()
    percentage_sum = 0.0
    count = 0

    for record in records:
        students.add(str(record.get("student_id")))
        letter = str(record.get("letter_grade", ""))
        distribution[letter] = distribution.get(letter, 0) + 1
        percentage = to_percentage(float(record.get("score", 0)), float(record.get("max_score", 0)))
        by_type.setdefault(str(record.get("assessment_type", "")), []).append(percentage)
        percentage_sum += percentage
        count += 1

    return {
        "total_students": len(students),
        "total_assessments": count,
        "grade_distribution": distribution,
        "average_percentage": percentage_sum / count if count else 0.0,
        "by_assessment_type": {
            kind: {"count": len(values), "average_percentage": sum(values) / len(values)}
            for kind, values in by_type.items()
        },
    }
