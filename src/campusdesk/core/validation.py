from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from campusdesk.core.announcements import (
    AUDIENCE_DEPARTMENT,
    AUDIENCE_SEMESTER,
    AUDIENCE_YEAR,
    AUDIENCES,
    CATEGORIES,
    PRIORITIES,
)
from campusdesk.core.attendance import ATTENDANCE_STATUSES
from campusdesk.core.grades import ASSESSMENT_TYPES, GRADE_STATUSES


@dataclass(frozen=True)
class FieldRule:
    name: str
    required: bool = False
    choices: Optional[Tuple[Any, ...]] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def as_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


GRADE_RULES: Tuple[FieldRule, ...] = (
    FieldRule("student_id", required=True),
    FieldRule("course_id", required=True),
    FieldRule("faculty_id", required=True),
    FieldRule("assessment_type", required=True, choices=ASSESSMENT_TYPES),
    FieldRule("assessment_name", required=True),
    FieldRule("score", required=True, minimum=0),
    FieldRule("max_score", required=True, minimum=1),
    FieldRule("weightage", required=True, minimum=0, maximum=100),
    FieldRule("semester", required=True),
    FieldRule("year", required=True),
    FieldRule("status", choices=GRADE_STATUSES),
)

ATTENDANCE_RULES: Tuple[FieldRule, ...] = (
    FieldRule("student_id", required=True),
    FieldRule("course_id", required=True),
    FieldRule("date", required=True),
    FieldRule("status", required=True, choices=ATTENDANCE_STATUSES),
    FieldRule("marked_by", required=True),
)

ANNOUNCEMENT_RULES: Tuple[FieldRule, ...] = (
    FieldRule("title", required=True),
    FieldRule("message", required=True),
    FieldRule("category", choices=CATEGORIES),
    FieldRule("priority", choices=PRIORITIES),
    FieldRule("target_audience", choices=AUDIENCES),
    FieldRule("created_by", required=True),
)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def check_rule(rule: FieldRule, value: Any) -> Optional[FieldError]:
    if _is_blank(value):
        if rule.required:
            return FieldError(rule.name, f"{rule.name} is required")
        return None

    if rule.choices is not None and value not in rule.choices:
        allowed = ", ".join(str(choice) for choice in rule.choices)
        return FieldError(rule.name, f"{rule.name} must be one of: {allowed}")

    if rule.minimum is not None or rule.maximum is not None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return FieldError(rule.name, f"{rule.name} must be a number")
        if rule.minimum is not None and value < rule.minimum:
            return FieldError(rule.name, f"{rule.name} must be >= {rule.minimum:g}")
        if rule.maximum is not None and value > rule.maximum:
            return FieldError(rule.name, f"{rule.name} must be <= {rule.maximum:g}")

    return None


def validate(record: Mapping[str, Any], rules: Sequence[FieldRule]) -> List[FieldError]:
    errors: List[FieldError] = []
    for rule in rules:
        error = check_rule(rule, record.get(rule.name))
        if error is not None:
            errors.append(error)
    return errors


def _score_over_max(record: Mapping[str, Any], errors: List[FieldError]) -> Optional[FieldError]:
    failed = {error.field for error in errors}
    if "score" in failed or "max_score" in failed:
        return None
    if record["score"] > record["max_score"]:
        return FieldError("score", "score cannot exceed max_score")
    return None


def validate_grade(record: Mapping[str, Any]) -> List[FieldError]:
    errors = validate(record, GRADE_RULES)
    over = _score_over_max(record, errors)
    if over is not None:
        errors.append(over)
    return errors


def validate_score(score: Any, max_score: Any) -> List[FieldError]:
    record = {"score": score, "max_score": max_score}
    score_rules = [rule for rule in GRADE_RULES if rule.name in record]
    errors = validate(record, score_rules)
    over = _score_over_max(record, errors)
    if over is not None:
        errors.append(over)
    return errors


def validate_attendance(record: Mapping[str, Any]) -> List[FieldError]:
    errors = validate(record, ATTENDANCE_RULES)
    value = record.get("date")
    if "date" not in {error.field for error in errors} and not isinstance(value, date):
        try:
            date.fromisoformat(str(value))
        except ValueError:
            errors.append(FieldError("date", "date must be an ISO-8601 calendar date"))
    return errors


def validate_announcement(record: Mapping[str, Any]) -> List[FieldError]:
    errors = validate(record, ANNOUNCEMENT_RULES)
    targets = {
        AUDIENCE_YEAR: "target_year",
        AUDIENCE_SEMESTER: "target_semester",
        AUDIENCE_DEPARTMENT: "target_department",
    }
    target_field = targets.get(record.get("target_audience"))
    if target_field and _is_blank(record.get(target_field)):
        errors.append(FieldError(target_field, f"{target_field} is required for {record['target_audience']}"))
    return errors
