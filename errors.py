"""Error kinds raised by the engagement layer.

Every error has a stable ``kind`` string and an HTTP status; the app turns
them into ``{"success": false, "message": ..., "error": kind}`` responses.
"""


class LibraryError(Exception):
    kind = "error"
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "message": self.message, "error": self.kind}


class NotFound(LibraryError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class DuplicateEntry(LibraryError):
    kind = "duplicate_entry"
    status_code = 400
    default_message = "Entry already exists"


class Forbidden(LibraryError):
    kind = "forbidden"
    status_code = 403
    default_message = "Forbidden"


class ValidationError(LibraryError):
    kind = "validation_error"
    status_code = 400
    default_message = "Invalid input"


class PersistenceError(LibraryError):
    kind = "persistence_error"
    status_code = 500
    default_message = "Storage unavailable"
