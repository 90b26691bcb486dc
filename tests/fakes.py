import copy
import threading
from typing import Any, Dict, List, Optional
from unittest import mock

from appwrite.exception import AppwriteException

from campusdesk.services.appwrite_service import AppwriteService


class FakeQuery:
    @staticmethod
    def equal(attribute: str, value: Any):
        return ("equal", attribute, value if isinstance(value, list) else [value])

    @staticmethod
    def limit(value: int):
        return ("limit", value)

    @staticmethod
    def cursor_after(document_id: str):
        return ("cursor_after", document_id)

    @staticmethod
    def order_asc(attribute: str):
        return ("order_asc", attribute)

    @staticmethod
    def order_desc(attribute: str):
        return ("order_desc", attribute)


class FakeDatabases:
    def __init__(self, client: Any = None) -> None:
        self.collections: Dict[str, Dict[str, Dict]] = {}
        self.list_calls = 0
        self._lock = threading.Lock()

    def _collection(self, collection_id: str) -> Dict[str, Dict]:
        return self.collections.setdefault(collection_id, {})

    def seed(self, collection_id: str, document_id: str, data: Dict) -> None:
        self._collection(collection_id)[document_id] = {**data, "$id": document_id}

    def documents(self, collection_id: str) -> List[Dict]:
        return list(self._collection(collection_id).values())

    def list_documents(self, database_id: str, collection_id: str, queries: Optional[List] = None) -> Dict:
        with self._lock:
            self.list_calls += 1
            docs = copy.deepcopy(list(self._collection(collection_id).values()))
        limit = None
        cursor = None
        for query in queries or []:
            kind = query[0]
            if kind == "equal":
                docs = [doc for doc in docs if doc.get(query[1]) in query[2]]
            elif kind == "order_asc":
                docs.sort(key=lambda doc: str(doc.get(query[1]) or ""))
            elif kind == "order_desc":
                docs.sort(key=lambda doc: str(doc.get(query[1]) or ""), reverse=True)
            elif kind == "limit":
                limit = query[1]
            elif kind == "cursor_after":
                cursor = query[1]
        if cursor is not None:
            ids = [doc["$id"] for doc in docs]
            docs = docs[ids.index(cursor) + 1:]
        if limit is not None:
            docs = docs[:limit]
        return {"total": len(docs), "documents": docs}

    def create_document(self, database_id: str, collection_id: str, document_id: str, data: Dict) -> Dict:
        with self._lock:
            collection = self._collection(collection_id)
            if document_id in collection:
                raise AppwriteException("Document with the requested ID already exists.", 409)
            doc = {**copy.deepcopy(data), "$id": document_id}
            collection[document_id] = doc
            return copy.deepcopy(doc)

    def get_document(self, database_id: str, collection_id: str, document_id: str) -> Dict:
        collection = self._collection(collection_id)
        if document_id not in collection:
            raise AppwriteException("Document with the requested ID could not be found.", 404)
        return copy.deepcopy(collection[document_id])

    def update_document(self, database_id: str, collection_id: str, document_id: str, data: Dict) -> Dict:
        with self._lock:
            collection = self._collection(collection_id)
            if document_id not in collection:
                raise AppwriteException("Document with the requested ID could not be found.", 404)
            collection[document_id].update(copy.deepcopy(data))
            return copy.deepcopy(collection[document_id])

    def delete_document(self, database_id: str, collection_id: str, document_id: str) -> None:
        with self._lock:
            collection = self._collection(collection_id)
            if document_id not in collection:
                raise AppwriteException("Document with the requested ID could not be found.", 404)
            del collection[document_id]


def build_service(testcase) -> AppwriteService:
    for target, replacement in (("Query", FakeQuery), ("Databases", FakeDatabases)):
        patcher = mock.patch(f"campusdesk.services.appwrite_service.{target}", replacement)
        patcher.start()
        testcase.addCleanup(patcher.stop)

    return AppwriteService(
        endpoint="http://localhost/v1",
        project_id="campusdesk-test",
        api_key="test-key",
        database_id="campus",
        courses_collection_id="courses",
        grades_collection_id="grades",
        attendance_collection_id="attendance",
        announcements_collection_id="announcements",
    )
