"""Persistence for user documents and the book catalog.

UserStore loads and saves whole LibraryUser documents. BookCatalog resolves
book references and owns the per-book view/download counters.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document
from errors import DuplicateEntry, NotFound, PersistenceError
from logging_setup import get_logger
from schemas import LibraryUser, utcnow

log = get_logger()

USERS = "libraryuser"
BOOKS = "book"

SUMMARY_FIELDS = ("title", "author", "cover_url", "category", "pages", "access_level", "download_count")


def to_object_id(id_str: Any) -> Optional[ObjectId]:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        return None


def ensure_indexes(db) -> None:
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[USERS].create_index([("role", ASCENDING)])
    db[USERS].create_index([("created_at", DESCENDING)])
    db[USERS].create_index([("reading_list.book_id", ASCENDING)])
    db[BOOKS].create_index([("access_level", ASCENDING)])
    db[BOOKS].create_index([("category", ASCENDING)])


class UserStore:
    def __init__(self, db):
        self.collection = db[USERS]
        self.db = db

    def load_user(self, user_id: str) -> LibraryUser:
        oid = to_object_id(user_id)
        if oid is None:
            raise NotFound("User not found")
        try:
            doc = self.collection.find_one({"_id": oid})
        except PyMongoError as e:
            log.exception("load_user failed user=%s", user_id)
            raise PersistenceError(str(e)[:120])
        if not doc:
            raise NotFound("User not found")
        return LibraryUser.from_document(doc)

    def find_by_email(self, email: str) -> Optional[LibraryUser]:
        doc = self.collection.find_one({"email": email.strip().lower()})
        return LibraryUser.from_document(doc) if doc else None

    def insert_user(self, user: LibraryUser) -> str:
        if self.find_by_email(user.email):
            raise DuplicateEntry("Email already registered")
        try:
            uid = create_document(USERS, user, database=self.db)
        except DuplicateKeyError:
            raise DuplicateEntry("Email already registered")
        user.id = uid
        return uid

    def save_user(self, user: LibraryUser) -> LibraryUser:
        """Replace the stored document with ``user``.

        The write only lands if nobody saved the document since it was
        loaded; otherwise PersistenceError is raised and nothing changes.
        """
        oid = to_object_id(user.id)
        if oid is None:
            raise NotFound("User not found")
        expected = user.revision
        doc = user.to_document()
        doc["revision"] = expected + 1
        try:
            existing = self.collection.find_one({"_id": oid}, {"created_at": 1})
            if existing is None:
                raise NotFound("User not found")
            doc["created_at"] = existing.get("created_at")
            doc["updated_at"] = utcnow()
            res = self.collection.replace_one({"_id": oid, "revision": expected}, doc)
        except PyMongoError as e:
            log.exception("save_user failed user=%s", user.id)
            raise PersistenceError(str(e)[:120])
        if res.matched_count == 0:
            log.warning("write conflict user=%s revision=%s", user.id, expected)
            raise PersistenceError("Write conflict, reload and retry")
        user.revision = expected + 1
        return user

    def update_fields(self, user_id: str, fields: Dict[str, Any]) -> LibraryUser:
        oid = to_object_id(user_id)
        if oid is None:
            raise NotFound("User not found")
        update = dict(fields)
        update["updated_at"] = utcnow()
        res = self.collection.update_one({"_id": oid}, {"$set": update, "$inc": {"revision": 1}})
        if res.matched_count == 0:
            raise NotFound("User not found")
        return self.load_user(user_id)

    def delete_user(self, user_id: str) -> None:
        oid = to_object_id(user_id)
        if oid is None or self.collection.delete_one({"_id": oid}).deleted_count == 0:
            raise NotFound("User not found")

    def _query(self, search: str = "", role: str = "") -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if search:
            regex = {"$regex": search, "$options": "i"}
            query["$or"] = [{"name": regex}, {"email": regex}]
        if role:
            query["role"] = role
        return query

    def list_users(self, search: str = "", role: str = "", page: int = 1, limit: int = 10) -> Tuple[List[LibraryUser], int]:
        page = max(1, int(page))
        limit = max(1, int(limit))
        query = self._query(search, role)
        cursor = (
            self.collection.find(query)
            .sort("created_at", DESCENDING)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        users = [LibraryUser.from_document(d) for d in cursor]
        return users, self.collection.count_documents(query)

    def count_users(self, query: Optional[Dict[str, Any]] = None) -> int:
        return self.collection.count_documents(query or {})

    def role_breakdown(self) -> List[Dict[str, Any]]:
        counts: Dict[str, int] = {}
        for doc in self.collection.find({}, {"role": 1}):
            role = doc.get("role", "user")
            counts[role] = counts.get(role, 0) + 1
        return [{"_id": role, "count": n} for role, n in sorted(counts.items())]

    def recent_users(self, limit: int = 5) -> List[LibraryUser]:
        cursor = self.collection.find({}).sort("created_at", DESCENDING).limit(limit)
        return [LibraryUser.from_document(d) for d in cursor]


class BookCatalog:
    def __init__(self, db):
        self.collection = db[BOOKS]

    def resolve(self, book_id: str) -> Dict[str, Any]:
        oid = to_object_id(book_id)
        if oid is None:
            raise NotFound("Book not found")
        doc = self.collection.find_one({"_id": oid})
        if not doc:
            raise NotFound("Book not found")
        doc["_id"] = str(doc["_id"])
        return doc

    def summaries(self, book_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        oids = [o for o in (to_object_id(b) for b in book_ids) if o is not None]
        if not oids:
            return {}
        projection = {f: 1 for f in SUMMARY_FIELDS}
        found = {}
        for doc in self.collection.find({"_id": {"$in": oids}}, projection):
            bid = str(doc.pop("_id"))
            doc["id"] = bid
            found[bid] = doc
        return found

    def _increment(self, book_id: str, field: str) -> None:
        oid = to_object_id(book_id)
        if oid is None:
            return
        try:
            self.collection.update_one({"_id": oid}, {"$inc": {field: 1}})
        except PyMongoError:
            # Counters are best effort and independent of the user write.
            log.exception("counter %s increment failed book=%s", field, book_id)

    def increment_download_count(self, book_id: str) -> None:
        self._increment(book_id, "download_count")

    def increment_view_count(self, book_id: str) -> None:
        self._increment(book_id, "view_count")

