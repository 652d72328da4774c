"""Reading list, favorites and download tracking for a single user.

Every mutating call follows the same path: load the user document, resolve
the referenced book in the catalog, apply one change through the LibraryUser
methods, then save the whole document. Nothing is written when any step
before the save fails.
"""
from typing import Any, Dict, List, Optional

from errors import Forbidden
from logging_setup import get_logger
from schemas import LibraryUser
from stores import BookCatalog, UserStore

log = get_logger()


class EngagementService:
    def __init__(self, users: UserStore, catalog: BookCatalog):
        self.users = users
        self.catalog = catalog

    def _save(self, user: LibraryUser, action: str, book_id: str) -> LibraryUser:
        self.users.save_user(user)
        log.info("user=%s book=%s action=%s", user.id, book_id, action)
        return user

    def _with_books(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        books = self.catalog.summaries(i["book_id"] for i in items)
        for item in items:
            item["book"] = books.get(item["book_id"])
        return items

    # Reading list

    def get_reading_list(self, user_id: str) -> List[Dict[str, Any]]:
        user = self.users.load_user(user_id)
        return self._with_books([e.model_dump() for e in user.reading_list])

    def add_to_reading_list(self, user_id: str, book_id: str, notes: Optional[str] = None) -> List[Dict[str, Any]]:
        self.catalog.resolve(book_id)
        user = self.users.load_user(user_id)
        user.add_to_reading_list(book_id, notes)
        self._save(user, "reading_list_add", book_id)
        return self._with_books([e.model_dump() for e in user.reading_list])

    def remove_from_reading_list(self, user_id: str, book_id: str) -> List[Dict[str, Any]]:
        user = self.users.load_user(user_id)
        user.remove_from_reading_list(book_id)
        self._save(user, "reading_list_remove", book_id)
        return self._with_books([e.model_dump() for e in user.reading_list])

    def update_reading_list_entry(self, user_id: str, book_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update; keys absent from ``changes`` are left alone."""
        user = self.users.load_user(user_id)
        entry = user.update_reading_list_entry(
            book_id,
            notes=changes.get("notes"),
            progress=changes.get("progress"),
            is_favorite=changes.get("is_favorite"),
        )
        self._save(user, "reading_list_update", book_id)
        return entry.model_dump()

    def toggle_favorite_in_entry(self, user_id: str, book_id: str) -> bool:
        user = self.users.load_user(user_id)
        value = user.toggle_entry_favorite(book_id)
        self._save(user, "reading_list_favorite", book_id)
        return value

    def get_reading_list_stats(self, user_id: str) -> Dict[str, int]:
        return self.users.load_user(user_id).reading_list_stats()

    # Favorites & reading stats

    def get_favorites(self, user_id: str) -> List[Dict[str, Any]]:
        user = self.users.load_user(user_id)
        books = self.catalog.summaries(user.reading_stats.favorites)
        return [books[b] for b in user.reading_stats.favorites if b in books]

    def add_to_favorites(self, user_id: str, book_id: str) -> List[str]:
        self.catalog.resolve(book_id)
        user = self.users.load_user(user_id)
        if user.add_to_favorites(book_id):
            self._save(user, "favorites_add", book_id)
        return list(user.reading_stats.favorites)

    def remove_from_favorites(self, user_id: str, book_id: str) -> List[str]:
        user = self.users.load_user(user_id)
        if user.remove_from_favorites(book_id):
            self._save(user, "favorites_remove", book_id)
        return list(user.reading_stats.favorites)

    def track_currently_reading(self, user_id: str, book_id: str, last_page: int) -> Dict[str, Any]:
        self.catalog.resolve(book_id)
        user = self.users.load_user(user_id)
        item = user.track_currently_reading(book_id, last_page)
        self._save(user, "reading_progress", book_id)
        return item.model_dump()

    def mark_completed(self, user_id: str, book_id: str) -> int:
        self.catalog.resolve(book_id)
        user = self.users.load_user(user_id)
        total = user.mark_completed(book_id)
        self._save(user, "reading_complete", book_id)
        return total

    def get_personal_stats(self, user_id: str) -> Dict[str, Any]:
        return self.users.load_user(user_id).personal_stats()

    # Downloads

    def get_downloads(self, user_id: str) -> List[Dict[str, Any]]:
        user = self.users.load_user(user_id)
        return self._with_books([d.model_dump() for d in user.downloaded_books])

    def track_download(self, user_id: str, book_id: str) -> Dict[str, Any]:
        """Record a download and bump the book's global counter.

        The catalog increment is a separate write made after the user
        document is saved.
        """
        book = self.catalog.resolve(book_id)
        user = self.users.load_user(user_id)
        if book.get("access_level") == "premium" and not user.has_premium_access():
            log.warning("premium download refused user=%s book=%s", user.id, book_id)
            raise Forbidden("Premium subscription required to download this book")
        item = user.track_download(book_id)
        self._save(user, "download", book_id)
        self.catalog.increment_download_count(book_id)
        return {"download": item.model_dump(), "download_url": book.get("file_url")}
