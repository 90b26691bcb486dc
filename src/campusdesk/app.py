import asyncio
from datetime import date, datetime
import logging
from typing import Dict, List, NoReturn, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from campusdesk.config.logging_config import configure_logging
from campusdesk.config.settings import settings
from campusdesk.core.announcements import AnnouncementChannel, AudienceProfile
from campusdesk.core.attendance import InvalidStatusError
from campusdesk.core.validation import (
    FieldError,
    validate_announcement,
    validate_attendance,
    validate_grade,
    validate_score,
)
from campusdesk.services.appwrite_service import (
    AppwriteService,
    AppwriteServiceError,
    DuplicateRecordError,
    RecordNotFoundError,
)

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="CampusDesk API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

channel = AnnouncementChannel(queue_size=settings.announcement_queue_size)

UNPROCESSABLE = 422


class GradePayload(BaseModel):
    student_id: str
    course_id: str
    faculty_id: str
    assessment_type: str
    assessment_name: str
    score: float
    max_score: float
    weightage: float
    semester: str
    year: int
    remarks: str = ""
    status: Optional[str] = None


class ScorePayload(BaseModel):
    score: float
    max_score: float


class AttendancePayload(BaseModel):
    student_id: str
    course_id: str
    date: date
    status: str
    marked_by: str


class BulkAttendanceEntry(BaseModel):
    student_id: str
    status: str


class BulkAttendancePayload(BaseModel):
    course_id: str
    date: date
    marked_by: str
    entries: List[BulkAttendanceEntry] = Field(default_factory=list)


class AttendanceCorrectionPayload(BaseModel):
    status: str


class AnnouncementPayload(BaseModel):
    title: str
    message: str
    created_by: str
    category: Optional[str] = None
    priority: Optional[str] = None
    target_audience: Optional[str] = None
    target_year: Optional[int] = None
    target_semester: Optional[int] = None
    target_department: Optional[str] = None
    expires_at: Optional[datetime] = None


def get_service() -> AppwriteService:
    try:
        return AppwriteService.from_settings()
    except AppwriteServiceError as exc:
        logger.error("Persistence is not configured: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


def _required_uid(x_user_id: Optional[str]) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing x-user-id header")
    return x_user_id


def _reject_invalid(errors: List[FieldError]) -> None:
    if errors:
        raise HTTPException(
            status_code=UNPROCESSABLE,
            detail=[error.as_dict() for error in errors],
        )


def _raise_service_error(exc: Exception) -> NoReturn:
    if isinstance(exc, RecordNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, DuplicateRecordError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, InvalidStatusError):
        raise HTTPException(status_code=UNPROCESSABLE, detail=str(exc)) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/grades", status_code=status.HTTP_201_CREATED)
def save_grade(
    payload: GradePayload,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    data = payload.model_dump()
    _reject_invalid(validate_grade(data))
    try:
        return svc.save_grade(data)
    except AppwriteServiceError as exc:
        _raise_service_error(exc)


@app.get("/grades")
def list_grades(
    student_id: Optional[str] = None,
    course_id: Optional[str] = None,
    grade_status: Optional[str] = Query(default=None, alias="status"),
    semester: Optional[str] = None,
    year: Optional[int] = None,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> List[Dict]:
    _required_uid(x_user_id)
    try:
        return svc.list_grades(
            student_id=student_id,
            course_id=course_id,
            status=grade_status,
            semester=semester,
            year=year,
        )
    except AppwriteServiceError as exc:
        _raise_service_error(exc)


@app.patch("/grades/{grade_id}/score")
def update_grade_score(
    grade_id: str,
    payload: ScorePayload,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    _reject_invalid(validate_score(payload.score, payload.max_score))
    try:
        return svc.update_grade_score(grade_id, payload.score, payload.max_score)
    except AppwriteServiceError as exc:
        _raise_service_error(exc)


@app.put("/grades/{grade_id}/publish")
def publish_grade(
    grade_id: str,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    try:
        return svc.set_grade_status(grade_id, "published")
    except AppwriteServiceError as exc:
        _raise_service_error(exc)


@app.put("/grades/{grade_id}/finalize")
def finalize_grade(
    grade_id: str,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    try:
        return svc.set_grade_status(grade_id, "finalized")
    except AppwriteServiceError as exc:
        _raise_service_error(exc)


@app.delete("/grades/{grade_id}")
def delete_grade(
    grade_id: str,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict[str, str]:
    _required_uid(x_user_id)
    try:
        svc.delete_grade(grade_id)
        return {"status": "deleted"}
    except AppwriteServiceError as exc:
        _raise_service_error(exc)


@app.get("/grades/student/{student_id}/gpa")
def student_gpa(
    student_id: str,
    semester: Optional[str] = None,
    year: Optional[int] = None,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    try:
        summary = svc.student_gpa(student_id, semester=semester, year=year)
    except AppwriteServiceError as exc:
        _raise_service_error(exc)
    summary["gpa"] = round(summary["gpa"], 2)
    return summary


@app.get("/grades/student/{student_id}/transcript")
def student_transcript(
    student_id: str,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    try:
        transcript = svc.student_transcript(student_id)
    except AppwriteServiceError as exc:
        _raise_service_error(exc)
    for term in transcript["terms"]:
        term["gpa"] = round(term["gpa"], 2)
    transcript["cgpa"] = round(transcript["cgpa"], 2)
    return transcript


@app.get("/grades/stats/course/{course_id}")
def course_grade_stats(
    course_id: str,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    try:
        stats = svc.course_grade_stats(course_id)
    except AppwriteServiceError as exc:
        _raise_service_error(exc)
    stats["average_percentage"] = round(stats["average_percentage"], 2)
    for kind in stats["by_assessment_type"].values():
        kind["average_percentage"] = round(kind["average_percentage"], 2)
    return stats


@app.post("/attendance", status_code=status.HTTP_201_CREATED)
def mark_attendance(
    payload: AttendancePayload,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    data = payload.model_dump()
    _reject_invalid(validate_attendance(data))
    try:
        return svc.mark_attendance(**data)
    except (AppwriteServiceError, InvalidStatusError) as exc:
        _raise_service_error(exc)


@app.post("/attendance/bulk", status_code=status.HTTP_201_CREATED)
def bulk_mark_attendance(
    payload: BulkAttendancePayload,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    try:
        return svc.bulk_mark_attendance(
            course_id=payload.course_id,
            date=payload.date,
            marked_by=payload.marked_by,
            entries=[entry.model_dump() for entry in payload.entries],
        )
    except (AppwriteServiceError, InvalidStatusError) as exc:
        _raise_service_error(exc)


@app.patch("/attendance/{record_id}")
def correct_attendance(
    record_id: str,
    payload: AttendanceCorrectionPayload,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    try:
        return svc.correct_attendance(record_id, payload.status)
    except (AppwriteServiceError, InvalidStatusError) as exc:
        _raise_service_error(exc)


@app.get("/attendance/summary/student/{student_id}")
def attendance_summary(
    student_id: str,
    course_id: Optional[str] = None,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    try:
        return svc.attendance_summary(student_id, course_id=course_id)
    except (AppwriteServiceError, InvalidStatusError) as exc:
        _raise_service_error(exc)


@app.get("/attendance/report/course/{course_id}")
def course_attendance_report(
    course_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    try:
        return svc.course_attendance_report(course_id, start_date=start_date, end_date=end_date)
    except (AppwriteServiceError, InvalidStatusError) as exc:
        _raise_service_error(exc)


@app.post("/announcements", status_code=status.HTTP_201_CREATED)
def create_announcement(
    payload: AnnouncementPayload,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict:
    _required_uid(x_user_id)
    data = payload.model_dump()
    _reject_invalid(validate_announcement(data))
    try:
        announcement = svc.create_announcement(data)
    except AppwriteServiceError as exc:
        _raise_service_error(exc)
    channel.publish(announcement)
    return announcement


@app.get("/announcements/active")
def list_active_announcements(
    year: Optional[int] = None,
    semester: Optional[int] = None,
    department: Optional[str] = None,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> List[Dict]:
    _required_uid(x_user_id)
    profile = AudienceProfile(year=year, semester=semester, department=department)
    try:
        return svc.list_active_announcements(profile)
    except AppwriteServiceError as exc:
        _raise_service_error(exc)


@app.delete("/announcements/{announcement_id}")
def delete_announcement(
    announcement_id: str,
    x_user_id: Optional[str] = Header(default=None),
    svc: AppwriteService = Depends(get_service),
) -> Dict[str, str]:
    _required_uid(x_user_id)
    try:
        svc.delete_announcement(announcement_id)
        return {"status": "deleted"}
    except AppwriteServiceError as exc:
        _raise_service_error(exc)


@app.websocket("/ws/announcements")
async def announcement_feed(
    websocket: WebSocket,
    year: Optional[int] = None,
    semester: Optional[int] = None,
    department: Optional[str] = None,
) -> None:
    profile = AudienceProfile(year=year, semester=semester, department=department)
    # Subscribed ahead of accept(); publishes that race the handshake stay queued.
    subscription = channel.subscribe(profile, asyncio.get_running_loop())
    sender: Optional[asyncio.Task] = None

    async def forward() -> None:
        while True:
            await websocket.send_json(await subscription.get())

    try:
        await websocket.accept()
        sender = asyncio.create_task(forward())
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        channel.unsubscribe(subscription)
        if sender is not None:
            sender.cancel()
            for outcome in await asyncio.gather(sender, return_exceptions=True):
                if not isinstance(outcome, asyncio.CancelledError):
                    logger.warning("Announcement feed stopped sending: %r", outcome)
