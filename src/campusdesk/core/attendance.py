from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Union

PRESENT = "Present"
ABSENT = "Absent"
LEAVE = "Leave"

ATTENDANCE_STATUSES = (PRESENT, ABSENT, LEAVE)

AttendanceRecord = Union[str, Mapping[str, Any], Any]


class InvalidStatusError(ValueError):
    def __init__(self, status: Any) -> None:
        super().__init__(
            f"Invalid attendance status {status!r}; expected one of {', '.join(ATTENDANCE_STATUSES)}"
        )
        self.status = status


@dataclass(frozen=True)
class AttendanceSummary:
    present: int
    absent: int
    leave: int
    total: int
    percentage: float

    def as_dict(self, round_to: int = 1) -> Dict[str, Any]:
        data = asdict(self)
        data["percentage"] = round(self.percentage, round_to)
        return data


def _status_of(record: AttendanceRecord) -> Any:
    if isinstance(record, str):
        return record
    if isinstance(record, Mapping):
        return record.get("status")
    return getattr(record, "status", None)


def summarize(records: Iterable[AttendanceRecord]) -> AttendanceSummary:
    """
    Count Present/Absent/Leave records and derive the attendance percentage.

    Leave is part of the total but not of the numerator:
    percentage = present / (present + absent + leave) * 100.
    Any status outside the closed set raises InvalidStatusError.
    """
    counts = {status: 0 for status in ATTENDANCE_STATUSES}
    for record in records:
        status = _status_of(record)
        if status not in ATTENDANCE_STATUSES:
            raise InvalidStatusError(status)
        counts[status] += 1

    total = counts[PRESENT] + counts[ABSENT] + counts[LEAVE]
    percentage = (counts[PRESENT] / total) * 100 if total > 0 else 0.0
    return AttendanceSummary(
        present=counts[PRESENT],
        absent=counts[ABSENT],
        leave=counts[LEAVE],
        total=total,
        percentage=percentage,
    )


def summarize_by(records: Iterable[Mapping[str, Any]], key: str) -> Dict[str, AttendanceSummary]:
    groups: Dict[str, List[Mapping[str, Any]]] = {}
    for record in records:
        groups.setdefault(str(record.get(key)), []).append(record)
    return {group: summarize(items) for group, items in groups.items()}
