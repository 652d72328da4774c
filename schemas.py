"""
Database Schemas for the E-Library System

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercase of the class name (e.g., Book -> "book").

A LibraryUser document embeds the user's engagement with the catalog: the
reading list, reading statistics (currently reading + favorites) and the
download history. Those collections are only changed through the methods on
LibraryUser, and the whole document is written back after each change.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from errors import DuplicateEntry, NotFound, ValidationError

Role = Literal["admin", "moderator", "premium", "user"]
AccessLevel = Literal["public", "premium", "admin"]
Category = Literal[
    "Fiction", "Non-Fiction", "Science", "Technology", "History",
    "Biography", "Self-Help", "Business", "Other",
]

PREMIUM_ROLES = ("admin", "premium")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Preferences(BaseModel):
    notifications: bool = True
    theme: Literal["light", "dark"] = "light"


class ReadingListEntry(BaseModel):
    book_id: str
    added_at: datetime = Field(default_factory=utcnow)
    notes: str = ""
    is_favorite: bool = False
    last_read: Optional[datetime] = None
    progress: int = Field(0, ge=0, le=100)

    @property
    def status(self) -> str:
        if self.progress == 0:
            return "not_started"
        if self.progress == 100:
            return "completed"
        return "reading"


class CurrentlyReading(BaseModel):
    book_id: str
    last_page: int = Field(0, ge=0)
    started_at: datetime = Field(default_factory=utcnow)


class ReadingStats(BaseModel):
    total_books_read: int = Field(0, ge=0)
    total_reading_time: int = Field(0, ge=0, description="Minutes")
    currently_reading: List[CurrentlyReading] = Field(default_factory=list)
    favorites: List[str] = Field(default_factory=list)


class DownloadedBook(BaseModel):
    book_id: str
    downloaded_at: datetime = Field(default_factory=utcnow)
    download_count: int = Field(1, ge=1)


class LibraryUser(BaseModel):
    id: Optional[str] = Field(None, description="String form of the document _id")
    name: str = Field(..., max_length=100, description="Full name")
    email: str = Field(..., description="Email address, unique across users")
    password_hash: str = Field(..., description="Hashed password")
    role: Role = Field("user", description="admin, moderator, premium or user")
    avatar_url: Optional[str] = Field(None, description="Optional avatar image URL")
    is_active: bool = Field(True, description="Active account")
    last_login: Optional[datetime] = None
    preferences: Preferences = Field(default_factory=Preferences)
    reading_list: List[ReadingListEntry] = Field(default_factory=list)
    reading_stats: ReadingStats = Field(default_factory=ReadingStats)
    downloaded_books: List[DownloadedBook] = Field(default_factory=list)
    revision: int = Field(0, description="Incremented on every save")

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()

    # Reading list

    def find_entry(self, book_id: str) -> Optional[ReadingListEntry]:
        for entry in self.reading_list:
            if entry.book_id == book_id:
                return entry
        return None

    def _require_entry(self, book_id: str) -> ReadingListEntry:
        entry = self.find_entry(book_id)
        if entry is None:
            raise NotFound("Book not found in reading list")
        return entry

    def add_to_reading_list(self, book_id: str, notes: Optional[str] = None) -> ReadingListEntry:
        if self.find_entry(book_id) is not None:
            raise DuplicateEntry("Book already in reading list")
        entry = ReadingListEntry(book_id=book_id, notes=notes or "")
        self.reading_list.append(entry)
        return entry

    def remove_from_reading_list(self, book_id: str) -> None:
        remaining = [e for e in self.reading_list if e.book_id != book_id]
        if len(remaining) == len(self.reading_list):
            raise NotFound("Book not found in reading list")
        self.reading_list = remaining

    def update_reading_list_entry(self, book_id: str, notes: Optional[str] = None,
                                  progress: Any = None, is_favorite: Optional[bool] = None) -> ReadingListEntry:
        """Partial update of one entry.

        Progress that is not a whole number in [0, 100] is dropped without
        an error; an accepted progress value also stamps ``last_read``.
        """
        entry = self._require_entry(book_id)
        if notes is not None:
            entry.notes = notes
        value = _coerce_progress(progress)
        if value is not None:
            entry.progress = value
            entry.last_read = utcnow()
        if is_favorite is not None:
            entry.is_favorite = bool(is_favorite)
        return entry

    def toggle_entry_favorite(self, book_id: str) -> bool:
        entry = self._require_entry(book_id)
        entry.is_favorite = not entry.is_favorite
        return entry.is_favorite

    def reading_list_stats(self) -> Dict[str, int]:
        items = self.reading_list
        return {
            "totalBooks": len(items),
            "readingNow": sum(1 for e in items if 0 < e.progress < 100),
            "completed": sum(1 for e in items if e.progress == 100),
            "notStarted": sum(1 for e in items if e.progress == 0),
            "favorites": sum(1 for e in items if e.is_favorite),
        }

    # Favorites & reading stats (independent of ReadingListEntry.is_favorite)

    def add_to_favorites(self, book_id: str) -> bool:
        if book_id in self.reading_stats.favorites:
            return False
        self.reading_stats.favorites.append(book_id)
        return True

    def remove_from_favorites(self, book_id: str) -> bool:
        before = len(self.reading_stats.favorites)
        self.reading_stats.favorites = [b for b in self.reading_stats.favorites if b != book_id]
        return len(self.reading_stats.favorites) != before

    def track_currently_reading(self, book_id: str, last_page: Any) -> CurrentlyReading:
        if isinstance(last_page, bool) or not isinstance(last_page, int) or last_page < 0:
            raise ValidationError("Current page must be a non-negative integer")
        for item in self.reading_stats.currently_reading:
            if item.book_id == book_id:
                item.last_page = last_page
                return item
        item = CurrentlyReading(book_id=book_id, last_page=last_page)
        self.reading_stats.currently_reading.append(item)
        return item

    def mark_completed(self, book_id: str) -> int:
        # Repeat completions of the same book are counted again.
        self.reading_stats.currently_reading = [
            c for c in self.reading_stats.currently_reading if c.book_id != book_id
        ]
        self.reading_stats.total_books_read += 1
        return self.reading_stats.total_books_read

    # Downloads

    def track_download(self, book_id: str) -> DownloadedBook:
        for item in self.downloaded_books:
            if item.book_id == book_id:
                item.download_count += 1
                item.downloaded_at = utcnow()
                return item
        item = DownloadedBook(book_id=book_id)
        self.downloaded_books.append(item)
        return item

    def has_premium_access(self) -> bool:
        return self.role in PREMIUM_ROLES

    # Views

    def personal_stats(self) -> Dict[str, Any]:
        stats = self.reading_stats
        return {
            "totalBooksRead": stats.total_books_read,
            "totalReadingTime": stats.total_reading_time,
            "currentlyReading": [c.model_dump() for c in stats.currently_reading],
            "favorites": list(stats.favorites),
            "readingListCount": len(self.reading_list),
            "downloadedBooksCount": len(self.downloaded_books),
            "totalDownloads": sum(d.download_count for d in self.downloaded_books),
        }

    def public_view(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"password_hash", "revision"})

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id"})

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "LibraryUser":
        data = {k: v for k, v in doc.items() if k not in ("_id", "created_at", "updated_at")}
        data["id"] = str(doc["_id"])
        return cls(**data)


def _coerce_progress(progress: Any) -> Optional[int]:
    """Whole-number percentage in [0, 100], or None when the value is unusable."""
    if isinstance(progress, bool):
        return None
    if isinstance(progress, float) and progress.is_integer():
        progress = int(progress)
    elif isinstance(progress, str):
        try:
            progress = int(progress.strip())
        except ValueError:
            return None
    if not isinstance(progress, int) or not 0 <= progress <= 100:
        return None
    return progress


class Book(BaseModel):
    title: str = Field(..., max_length=200)
    author: str
    description: str = Field("", max_length=1000)
    isbn: Optional[str] = None
    category: Category = "Other"
    cover_url: Optional[str] = None
    file_url: Optional[str] = None
    file_size: int = Field(0, ge=0)
    pages: int = Field(1, ge=1)
    publication_year: Optional[int] = Field(None, ge=1000)
    publisher: Optional[str] = None
    language: str = "English"
    access_level: AccessLevel = "public"
    tags: List[str] = Field(default_factory=list)
    featured: bool = Field(False, description="Show on homepage as featured")
    is_active: bool = True
    uploaded_by: Optional[str] = None
    download_count: int = Field(0, ge=0)
    view_count: int = Field(0, ge=0)


class Activity(BaseModel):
    user_id: Optional[str] = None
    type: str = Field(..., description="register, login, view, download, create_book, update_book, delete_book, delete_user")
    meta: dict = Field(default_factory=dict)


# Request payloads. Wire names follow the web front end (camelCase).

class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ReadingListAdd(_Payload):
    book_id: str = Field(..., alias="bookId")
    notes: Optional[str] = None


class ReadingListUpdate(_Payload):
    notes: Optional[str] = None
    # Unusable progress values are dropped by the aggregate, not rejected here.
    progress: Any = None
    is_favorite: Optional[bool] = Field(None, alias="isFavorite")


class BookRef(_Payload):
    book_id: str = Field(..., alias="bookId")


class ReadingProgress(_Payload):
    book_id: str = Field(..., alias="bookId")
    current_page: int = Field(..., alias="currentPage")
