from datetime import date, datetime, timezone
import hashlib
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from appwrite.client import Client
from appwrite.exception import AppwriteException
from appwrite.id import ID
from appwrite.query import Query
from appwrite.services.databases import Databases

from campusdesk.config.settings import settings
from campusdesk.core.announcements import AudienceProfile, is_live, matches_audience, sort_for_display
from campusdesk.core.attendance import ATTENDANCE_STATUSES, InvalidStatusError, summarize, summarize_by
from campusdesk.core.gpa import calculate_cgpa, compute_weighted_average
from campusdesk.core.grades import GRADE_STATUSES, grade_assessment, summarize_course_grades
from campusdesk.core.timestamps import stamp_new, to_iso, touch

logger = logging.getLogger(__name__)


class AppwriteServiceError(Exception):
    pass


class RecordNotFoundError(AppwriteServiceError):
    pass


class DuplicateRecordError(AppwriteServiceError):
    pass


class AppwriteService:
    PAGE_SIZE = 500

    def __init__(
        self,
        endpoint: str,
        project_id: str,
        api_key: str,
        database_id: str,
        courses_collection_id: str,
        grades_collection_id: str,
        attendance_collection_id: str,
        announcements_collection_id: str,
    ) -> None:
        if not endpoint:
            raise AppwriteServiceError("Missing APPWRITE_ENDPOINT in environment")
        if not project_id:
            raise AppwriteServiceError("Missing APPWRITE_PROJECT_ID in environment")
        if not api_key:
            raise AppwriteServiceError("Missing APPWRITE_API_KEY in environment")
        if not database_id:
            raise AppwriteServiceError("Missing APPWRITE_DATABASE_ID in environment")

        self.database_id = database_id
        self.courses_collection_id = courses_collection_id
        self.grades_collection_id = grades_collection_id
        self.attendance_collection_id = attendance_collection_id
        self.announcements_collection_id = announcements_collection_id

        client = Client()
        client.set_endpoint(endpoint.rstrip("/"))
        client.set_project(project_id)
        client.set_key(api_key)

        self.db = Databases(client)

    @classmethod
    def from_settings(cls) -> "AppwriteService":
        return cls(
            endpoint=settings.appwrite_endpoint,
            project_id=settings.appwrite_project_id,
            api_key=settings.appwrite_api_key,
            database_id=settings.appwrite_database_id,
            courses_collection_id=settings.appwrite_courses_collection_id,
            grades_collection_id=settings.appwrite_grades_collection_id,
            attendance_collection_id=settings.appwrite_attendance_collection_id,
            announcements_collection_id=settings.appwrite_announcements_collection_id,
        )

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def _row(doc: Mapping[str, Any]) -> Dict:
        row = dict(doc)
        row["id"] = row["$id"]
        return row

    @staticmethod
    def _to_date(value: Any) -> str:
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        return date.fromisoformat(str(value)).isoformat()

    @staticmethod
    def _natural_id(*parts: Any) -> str:
        # Appwrite ids are limited to 36 chars.
        key = "|".join(str(part) for part in parts)
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]

    def _list_page(self, collection_id: str, queries: List[str]) -> List[Dict]:
        try:
            result = self.db.list_documents(self.database_id, collection_id, queries=queries)
            return list(result.get("documents", []))
        except AppwriteException as exc:
            raise AppwriteServiceError(str(exc)) from exc

    def _list_documents(self, collection_id: str, queries: List[str]) -> List[Dict]:
        documents: List[Dict] = []
        while True:
            page_queries = [*queries, Query.limit(self.PAGE_SIZE)]
            if documents:
                page_queries.append(Query.cursor_after(documents[-1]["$id"]))
            page = self._list_page(collection_id, page_queries)
            documents.extend(page)
            if len(page) < self.PAGE_SIZE:
                return documents

    def _create_document(self, collection_id: str, data: Dict, document_id: Optional[str] = None) -> Dict:
        try:
            return self.db.create_document(
                self.database_id,
                collection_id,
                document_id or ID.unique(),
                data,
            )
        except AppwriteException as exc:
            if getattr(exc, "code", None) == 409:
                raise DuplicateRecordError(str(exc)) from exc
            raise AppwriteServiceError(str(exc)) from exc

    def _get_document(self, collection_id: str, document_id: str) -> Dict:
        try:
            return self.db.get_document(self.database_id, collection_id, document_id)
        except AppwriteException as exc:
            if getattr(exc, "code", None) == 404:
                raise RecordNotFoundError(f"Document {document_id} not found") from exc
            raise AppwriteServiceError(str(exc)) from exc

    def _update_document(self, collection_id: str, document_id: str, data: Dict) -> Dict:
        try:
            return self.db.update_document(self.database_id, collection_id, document_id, data)
        except AppwriteException as exc:
            if getattr(exc, "code", None) == 404:
                raise RecordNotFoundError(f"Document {document_id} not found") from exc
            raise AppwriteServiceError(str(exc)) from exc

    def _delete_document(self, collection_id: str, document_id: str) -> None:
        try:
            self.db.delete_document(self.database_id, collection_id, document_id)
        except AppwriteException as exc:
            if getattr(exc, "code", None) == 404:
                raise RecordNotFoundError(f"Document {document_id} not found") from exc
            raise AppwriteServiceError(str(exc)) from exc

    def get_course_credits(self, course_ids: Iterable[str]) -> Dict[str, int]:
        ids = sorted({str(course_id) for course_id in course_ids})
        if not ids:
            return {}
        docs = self._list_documents(self.courses_collection_id, [Query.equal("$id", ids)])
        return {doc["$id"]: int(doc.get("credits", 0)) for doc in docs}

    def save_grade(self, data: Mapping[str, Any]) -> Dict:
        result = grade_assessment(data["score"], data["max_score"], data["weightage"])
        payload = dict(data)
        payload["percentage"] = result.percentage
        payload["letter_grade"] = result.letter_grade
        payload["grade_points"] = result.grade_points
        status = payload.pop("status", None)

        grade_id = self._natural_id(
            payload["student_id"],
            payload["course_id"],
            payload["assessment_type"],
            payload["assessment_name"],
        )
        now = self._now()
        try:
            doc = self._create_document(
                self.grades_collection_id,
                stamp_new({**payload, "status": status or "draft"}, now),
                document_id=grade_id,
            )
        except DuplicateRecordError:
            # Re-saving keeps the stored status unless one is given.
            if status:
                payload["status"] = status
            doc = self._update_document(self.grades_collection_id, grade_id, touch(payload, now))

        logger.info(
            "Grade %s saved for student %s in course %s: %s (%.1f)",
            doc["$id"],
            payload["student_id"],
            payload["course_id"],
            result.letter_grade,
            result.grade_points,
        )
        return self._row(doc)

    def update_grade_score(self, grade_id: str, score: float, max_score: float) -> Dict:
        grade = self._get_document(self.grades_collection_id, grade_id)
        result = grade_assessment(score, max_score, grade.get("weightage", 0))
        changes = {
            "score": score,
            "max_score": max_score,
            "percentage": result.percentage,
            "letter_grade": result.letter_grade,
            "grade_points": result.grade_points,
        }
        doc = self._update_document(self.grades_collection_id, grade_id, touch(changes, self._now()))
        return self._row(doc)

    def set_grade_status(self, grade_id: str, status: str) -> Dict:
        if status not in GRADE_STATUSES:
            raise AppwriteServiceError(f"Unsupported grade status: {status}")
        self._get_document(self.grades_collection_id, grade_id)
        doc = self._update_document(self.grades_collection_id, grade_id, touch({"status": status}, self._now()))
        logger.info("Grade %s marked %s", grade_id, status)
        return self._row(doc)

    def delete_grade(self, grade_id: str) -> None:
        self._delete_document(self.grades_collection_id, grade_id)

    def list_grades(
        self,
        *,
        student_id: Optional[str] = None,
        course_id: Optional[str] = None,
        status: Optional[str] = None,
        semester: Optional[str] = None,
        year: Optional[int] = None,
    ) -> List[Dict]:
        filters = {
            "student_id": student_id,
            "course_id": course_id,
            "status": status,
            "semester": semester,
            "year": year,
        }
        queries = [Query.equal(name, [value]) for name, value in filters.items() if value is not None]
        queries.append(Query.order_desc("updated_at"))
        return [self._row(doc) for doc in self._list_documents(self.grades_collection_id, queries)]

    def _credit_pairs(self, grades: List[Dict]) -> Tuple[List[Tuple[float, int]], Dict[str, int]]:
        credits = self.get_course_credits(grade["course_id"] for grade in grades)
        pairs = []
        for grade in grades:
            course_credits = credits.get(grade["course_id"], 0)
            if course_credits <= 0:
                continue
            pairs.append((float(grade["grade_points"]), course_credits))
        return pairs, credits

    def student_gpa(self, student_id: str, semester: Optional[str] = None, year: Optional[int] = None) -> Dict:
        grades = self.list_grades(student_id=student_id, status="finalized", semester=semester, year=year)
        pairs, credits = self._credit_pairs(grades)
        return {
            "student_id": student_id,
            "total_assessments": len(grades),
            "total_courses": len(credits),
            "total_credits": sum(course_credits for _, course_credits in pairs),
            "gpa": compute_weighted_average(pairs),
        }

    def student_transcript(self, student_id: str) -> Dict:
        grades = self.list_grades(student_id=student_id, status="finalized")
        by_term: Dict[Tuple[int, str], List[Dict]] = {}
        for grade in grades:
            key = (int(grade.get("year", 0)), str(grade.get("semester", "")))
            by_term.setdefault(key, []).append(grade)

        terms = []
        term_pairs = []
        for (year, semester), term_grades in sorted(by_term.items()):
            pairs, credits = self._credit_pairs(term_grades)
            term_pairs.append(pairs)
            terms.append(
                {
                    "year": year,
                    "semester": semester,
                    "total_courses": len(credits),
                    "total_credits": sum(course_credits for _, course_credits in pairs),
                    "gpa": compute_weighted_average(pairs),
                }
            )

        return {
            "student_id": student_id,
            "terms": terms,
            "cgpa": calculate_cgpa(term_pairs),
        }

    def course_grade_stats(self, course_id: str) -> Dict:
        grades = self.list_grades(course_id=course_id, status="finalized")
        stats = summarize_course_grades(grades)
        stats["course_id"] = course_id
        return stats

    def mark_attendance(
        self,
        *,
        student_id: str,
        course_id: str,
        date: Any,
        status: str,
        marked_by: str,
    ) -> Dict:
        if status not in ATTENDANCE_STATUSES:
            raise InvalidStatusError(status)
        day = self._to_date(date)

        now = self._now()
        record = {
            "student_id": student_id,
            "course_id": course_id,
            "date": day,
            "status": status,
            "marked_by": marked_by,
            "marked_at": to_iso(now),
        }
        try:
            doc = self._create_document(
                self.attendance_collection_id,
                stamp_new(record, now),
                document_id=self._natural_id(student_id, course_id, day),
            )
        except DuplicateRecordError as exc:
            raise DuplicateRecordError("Attendance already marked for this class") from exc
        return self._row(doc)

    def bulk_mark_attendance(
        self,
        *,
        course_id: str,
        date: Any,
        marked_by: str,
        entries: List[Mapping[str, Any]],
    ) -> Dict:
        for entry in entries:
            if entry.get("status") not in ATTENDANCE_STATUSES:
                raise InvalidStatusError(entry.get("status"))

        created: List[Dict] = []
        skipped: List[str] = []
        for entry in entries:
            try:
                created.append(
                    self.mark_attendance(
                        student_id=entry["student_id"],
                        course_id=course_id,
                        date=date,
                        status=entry["status"],
                        marked_by=marked_by,
                    )
                )
            except DuplicateRecordError:
                skipped.append(entry["student_id"])

        logger.info(
            "Bulk attendance for course %s on %s: %d marked, %d already present",
            course_id,
            self._to_date(date),
            len(created),
            len(skipped),
        )
        return {"created": created, "skipped": skipped}

    def correct_attendance(self, record_id: str, status: str) -> Dict:
        if status not in ATTENDANCE_STATUSES:
            raise InvalidStatusError(status)
        self._get_document(self.attendance_collection_id, record_id)
        doc = self._update_document(
            self.attendance_collection_id,
            record_id,
            touch({"status": status}, self._now()),
        )
        return self._row(doc)

    def list_attendance(self, *, student_id: Optional[str] = None, course_id: Optional[str] = None) -> List[Dict]:
        queries = []
        if student_id is not None:
            queries.append(Query.equal("student_id", [student_id]))
        if course_id is not None:
            queries.append(Query.equal("course_id", [course_id]))
        queries.append(Query.order_asc("date"))
        return [self._row(doc) for doc in self._list_documents(self.attendance_collection_id, queries)]

    def attendance_summary(self, student_id: str, course_id: Optional[str] = None) -> Dict:
        records = self.list_attendance(student_id=student_id, course_id=course_id)
        result = {
            "student_id": student_id,
            "course_id": course_id,
            **summarize(records).as_dict(),
        }
        if course_id is None:
            result["by_course"] = {
                cid: summary.as_dict() for cid, summary in summarize_by(records, "course_id").items()
            }
        return result

    def course_attendance_report(
        self,
        course_id: str,
        start_date: Optional[Any] = None,
        end_date: Optional[Any] = None,
    ) -> Dict:
        records = self.list_attendance(course_id=course_id)
        start = self._to_date(start_date) if start_date is not None else None
        end = self._to_date(end_date) if end_date is not None else None
        if start is not None:
            records = [record for record in records if record["date"] >= start]
        if end is not None:
            records = [record for record in records if record["date"] <= end]

        return {
            "course_id": course_id,
            "start_date": start,
            "end_date": end,
            "students": {
                sid: summary.as_dict() for sid, summary in summarize_by(records, "student_id").items()
            },
        }

    def create_announcement(self, data: Mapping[str, Any]) -> Dict:
        payload = dict(data)
        payload["category"] = payload.get("category") or "General"
        payload["priority"] = payload.get("priority") or "Medium"
        payload["target_audience"] = payload.get("target_audience") or "All"
        if payload.get("is_active") is None:
            payload["is_active"] = True
        if isinstance(payload.get("expires_at"), datetime):
            payload["expires_at"] = to_iso(payload["expires_at"])

        doc = self._create_document(self.announcements_collection_id, stamp_new(payload, self._now()))
        logger.info("Announcement %s created for audience %s", doc["$id"], payload["target_audience"])
        return self._row(doc)

    def list_active_announcements(self, profile: AudienceProfile, now: Optional[datetime] = None) -> List[Dict]:
        now = now or self._now()
        docs = self._list_documents(
            self.announcements_collection_id,
            [
                Query.equal("is_active", [True]),
                Query.order_desc("created_at"),
            ],
        )
        visible = [
            self._row(doc) for doc in docs if is_live(doc, now) and matches_audience(doc, profile)
        ]
        return sort_for_display(visible)

    def delete_announcement(self, announcement_id: str) -> None:
        self._delete_document(self.announcements_collection_id, announcement_id)
