import hashlib
import hmac
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from math import ceil
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, ConfigDict, Field
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from database import create_document, db
from engagement import EngagementService
from errors import Forbidden, LibraryError, NotFound, ValidationError
from logging_setup import get_logger
from schemas import (
    Activity, Book, BookRef, LibraryUser, Preferences, ReadingListAdd,
    ReadingListUpdate, ReadingProgress, Role, utcnow,
)
from stores import BookCatalog, UserStore, ensure_indexes, to_object_id

log = get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    try:
        ensure_indexes(db)
    except PyMongoError as e:
        log.warning("index setup skipped: %s", str(e)[:80])
    yield


app = FastAPI(title=config.APP_NAME, version=config.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Simple token system: user_id|expiry|signature, signed with SECRET_KEY
SECRET = config.secret_key()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errs = exc.errors()
    message = "Invalid request"
    if errs:
        first = errs[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
    return JSONResponse(status_code=400, content=ValidationError(message).to_dict())


HTTP_ERROR_KINDS = {401: "unauthenticated", 403: Forbidden.kind, 404: NotFound.kind}


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    content = {
        "success": False,
        "message": str(exc.detail),
        "error": HTTP_ERROR_KINDS.get(exc.status_code, "http_error"),
    }
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


def ok(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    body["data"] = data
    return body


# Utility functions

def hash_password(pw: str) -> str:
    return hashlib.sha256((pw + SECRET).encode()).hexdigest()


def verify_password(pw: str, hashed: str) -> bool:
    return hmac.compare_digest(hash_password(pw), hashed)


def make_token(user_id: str) -> str:
    expiry = int((datetime.now(timezone.utc) + timedelta(hours=config.token_ttl_hours())).timestamp())
    payload = f"{user_id}|{expiry}"
    signature = hashlib.sha256((payload + SECRET).encode()).hexdigest()
    return f"{payload}|{signature}"


def parse_token(token: str) -> Optional[str]:
    parts = token.split("|")
    if len(parts) != 3:
        return None
    user_id, expiry, signature = parts
    payload = f"{user_id}|{expiry}"
    if not hmac.compare_digest(hashlib.sha256((payload + SECRET).encode()).hexdigest(), signature):
        return None
    if not expiry.isdigit() or int(expiry) < int(datetime.now(timezone.utc).timestamp()):
        return None
    return user_id


def user_store() -> UserStore:
    return UserStore(db)


def catalog() -> BookCatalog:
    return BookCatalog(db)


def engagement() -> EngagementService:
    return EngagementService(user_store(), catalog())


def log_activity(kind: str, user_id: Optional[str] = None, **meta) -> None:
    create_document("activity", Activity(type=kind, user_id=user_id, meta=meta), database=db)


async def get_current_user(token: str = Depends(oauth2_scheme)) -> LibraryUser:
    uid = parse_token(token)
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        user = user_store().load_user(uid)
    except NotFound:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is deactivated")
    return user


def require_admin(current: LibraryUser = Depends(get_current_user)) -> LibraryUser:
    if current.role != "admin":
        raise Forbidden("Admins only")
    return current


# Health
@app.get("/")
def root():
    return {"name": config.APP_NAME, "status": "ok"}


@app.get("/test")
def test_database():
    response = {"backend": "✅ Running", "database": "❌ Not Available"}
    try:
        collections = db.list_collection_names()
        response["database"] = "✅ Connected"
        response["collections"] = collections
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth
class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str
    password: str = Field(..., min_length=6)


@app.post("/auth/register", response_model=Token)
def register(payload: RegisterPayload):
    user = LibraryUser(
        name=payload.name.strip(),
        email=payload.email,
        password_hash=hash_password(payload.password),
        role="user",
    )
    uid = user_store().insert_user(user)
    log_activity("register", uid, email=user.email)
    log.info("registered user=%s", uid)
    return Token(access_token=make_token(uid))


@app.post("/auth/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends()):
    store = user_store()
    user = store.find_by_email(form_data.username)
    if not user or not verify_password(form_data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is deactivated")
    store.update_fields(user.id, {"last_login": utcnow()})
    log_activity("login", user.id)
    return Token(access_token=make_token(user.id))


@app.get("/me")
def me(current: LibraryUser = Depends(get_current_user)):
    return ok(current.public_view())


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    preferences: Optional[Preferences] = None


@app.put("/me")
def update_me(payload: ProfileUpdate, current: LibraryUser = Depends(get_current_user)):
    update = payload.model_dump(exclude_none=True)
    if not update:
        return ok(current.public_view())
    user = user_store().update_fields(current.id, update)
    return ok(user.public_view(), "Profile updated")


class ChangePasswordPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., alias="newPassword")


@app.post("/me/change-password")
def change_password(payload: ChangePasswordPayload, current: LibraryUser = Depends(get_current_user)):
    if len(payload.new_password) < 6:
        raise ValidationError("New password must be at least 6 characters long")
    if not verify_password(payload.current_password, current.password_hash):
        raise ValidationError("Current password is incorrect")
    user_store().update_fields(current.id, {"password_hash": hash_password(payload.new_password)})
    return ok(None, "Password changed successfully")


# Books CRUD (admin endpoints for create/update/delete)
@app.post("/books", response_model=dict)
def create_book(book: Book, current: LibraryUser = Depends(require_admin)):
    book.uploaded_by = current.id
    book.download_count = 0
    book.view_count = 0
    bid = create_document("book", book, database=db)
    log_activity("create_book", current.id, book_id=bid)
    return {"id": bid}


class BookQuery(BaseModel):
    q: Optional[str] = None
    category: Optional[str] = None
    author: Optional[str] = None
    year: Optional[int] = None
    access_level: Optional[str] = None
    featured: Optional[bool] = None
    limit: int = Field(24, ge=1, le=100)


@app.post("/books/search")
def search_books(query: BookQuery):
    filt = {"is_active": True}
    if query.category:
        filt["category"] = query.category
    if query.author:
        filt["author"] = query.author
    if query.year:
        filt["publication_year"] = query.year
    if query.access_level:
        filt["access_level"] = query.access_level
    if query.featured is not None:
        filt["featured"] = query.featured

    # text search over title, author, tags, description, isbn
    if query.q:
        regex = {"$regex": query.q, "$options": "i"}
        filt["$or"] = [
            {"title": regex},
            {"author": regex},
            {"tags": regex},
            {"description": regex},
            {"isbn": regex},
        ]

    books = db["book"].find(filt).limit(int(query.limit))
    results = []
    for b in books:
        b["_id"] = str(b["_id"])
        results.append(b)
    return {"items": results}


@app.get("/books/{book_id}")
def get_book(book_id: str):
    books = catalog()
    book = books.resolve(book_id)
    books.increment_view_count(book_id)
    book["view_count"] = book.get("view_count", 0) + 1
    return book


class UpdateBookPayload(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    isbn: Optional[str] = None
    category: Optional[str] = None
    cover_url: Optional[str] = None
    file_url: Optional[str] = None
    file_size: Optional[int] = None
    pages: Optional[int] = Field(None, ge=1)
    publication_year: Optional[int] = None
    publisher: Optional[str] = None
    language: Optional[str] = None
    access_level: Optional[str] = None
    tags: Optional[List[str]] = None
    featured: Optional[bool] = None
    is_active: Optional[bool] = None


@app.put("/books/{book_id}")
def update_book(book_id: str, payload: UpdateBookPayload, current: LibraryUser = Depends(require_admin)):
    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    update["updated_at"] = utcnow()
    oid = to_object_id(book_id)
    if oid is None or db["book"].update_one({"_id": oid}, {"$set": update}).matched_count == 0:
        raise NotFound("Book not found")
    log_activity("update_book", current.id, book_id=book_id)
    return {"updated": True}


@app.delete("/books/{book_id}")
def delete_book(book_id: str, current: LibraryUser = Depends(require_admin)):
    oid = to_object_id(book_id)
    if oid is None or db["book"].delete_one({"_id": oid}).deleted_count == 0:
        raise NotFound("Book not found")
    log_activity("delete_book", current.id, book_id=book_id)
    return {"deleted": True}


@app.post("/books/{book_id}/download")
def download_book(book_id: str, current: LibraryUser = Depends(get_current_user)):
    result = engagement().track_download(current.id, book_id)
    return ok(result, "Download tracked successfully")


# Reading list
@app.get("/reading-list")
def get_reading_list(current: LibraryUser = Depends(get_current_user)):
    return ok(engagement().get_reading_list(current.id))


@app.post("/reading-list")
def add_to_reading_list(payload: ReadingListAdd, current: LibraryUser = Depends(get_current_user)):
    items = engagement().add_to_reading_list(current.id, payload.book_id, payload.notes)
    return ok(items, "Book added to reading list")


@app.get("/reading-list/stats")
def reading_list_stats(current: LibraryUser = Depends(get_current_user)):
    return ok(engagement().get_reading_list_stats(current.id))


@app.put("/reading-list/{book_id}")
def update_reading_list(book_id: str, payload: ReadingListUpdate, current: LibraryUser = Depends(get_current_user)):
    changes = payload.model_dump(exclude_unset=True)
    entry = engagement().update_reading_list_entry(current.id, book_id, changes)
    return ok(entry, "Reading list updated successfully")


@app.delete("/reading-list/{book_id}")
def remove_from_reading_list(book_id: str, current: LibraryUser = Depends(get_current_user)):
    items = engagement().remove_from_reading_list(current.id, book_id)
    return ok(items, "Book removed from reading list")


@app.post("/reading-list/{book_id}/favorite")
def toggle_reading_list_favorite(book_id: str, current: LibraryUser = Depends(get_current_user)):
    value = engagement().toggle_favorite_in_entry(current.id, book_id)
    action = "added to" if value else "removed from"
    return ok({"isFavorite": value}, f"Book {action} favorites")


# Favorites, progress, downloads
@app.get("/favorites")
def get_favorites(current: LibraryUser = Depends(get_current_user)):
    return ok(engagement().get_favorites(current.id))


@app.post("/favorites")
def add_favorite(payload: BookRef, current: LibraryUser = Depends(get_current_user)):
    favorites = engagement().add_to_favorites(current.id, payload.book_id)
    return ok(favorites, "Book added to favorites")


@app.delete("/favorites/{book_id}")
def remove_favorite(book_id: str, current: LibraryUser = Depends(get_current_user)):
    favorites = engagement().remove_from_favorites(current.id, book_id)
    return ok(favorites, "Book removed from favorites")


@app.post("/track-download")
def track_download(payload: BookRef, current: LibraryUser = Depends(get_current_user)):
    result = engagement().track_download(current.id, payload.book_id)
    return ok(result, "Download tracked successfully")


@app.get("/downloads")
def downloads(current: LibraryUser = Depends(get_current_user)):
    return ok(engagement().get_downloads(current.id))


@app.put("/reading-progress")
def reading_progress(payload: ReadingProgress, current: LibraryUser = Depends(get_current_user)):
    item = engagement().track_currently_reading(current.id, payload.book_id, payload.current_page)
    return ok(item, "Reading progress updated")


@app.post("/reading-complete")
def reading_complete(payload: BookRef, current: LibraryUser = Depends(get_current_user)):
    total = engagement().mark_completed(current.id, payload.book_id)
    return ok({"totalBooksRead": total}, "Book marked as completed")


@app.get("/stats/personal")
def personal_stats(current: LibraryUser = Depends(get_current_user)):
    return ok(engagement().get_personal_stats(current.id))


# Admin: user management
@app.get("/admin/users")
def admin_list_users(search: str = "", role: str = "", page: int = 1, limit: int = 10,
                     current: LibraryUser = Depends(require_admin)):
    users, total = user_store().list_users(search=search, role=role, page=page, limit=limit)
    limit = max(1, limit)
    return ok({
        "users": [u.public_view() for u in users],
        "totalPages": ceil(total / limit),
        "currentPage": max(1, page),
        "total": total,
    })


@app.get("/admin/users/stats")
def admin_user_stats(current: LibraryUser = Depends(require_admin)):
    store = user_store()
    total = store.count_users()
    active = store.count_users({"is_active": True})
    return ok({
        "totalUsers": total,
        "activeUsers": active,
        "inactiveUsers": total - active,
        "usersByRole": store.role_breakdown(),
        "recentUsers": [u.public_view() for u in store.recent_users()],
    })


@app.get("/admin/users/{user_id}")
def admin_get_user(user_id: str, current: LibraryUser = Depends(require_admin)):
    return ok(user_store().load_user(user_id).public_view())


class AdminUserUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    role: Optional[Role] = None
    is_active: Optional[bool] = Field(None, alias="isActive")


@app.put("/admin/users/{user_id}")
def admin_update_user(user_id: str, payload: AdminUserUpdate, current: LibraryUser = Depends(require_admin)):
    update = payload.model_dump(exclude_none=True)
    store = user_store()
    user = store.update_fields(user_id, update) if update else store.load_user(user_id)
    return ok(user.public_view(), "User updated")


@app.delete("/admin/users/{user_id}")
def admin_delete_user(user_id: str, current: LibraryUser = Depends(require_admin)):
    user_store().delete_user(user_id)
    log_activity("delete_user", current.id, target=user_id)
    return ok(None, "User deleted successfully")


# Simple activity feed for admin
@app.get("/admin/activity")
def admin_activity(current: LibraryUser = Depends(require_admin)):
    items = list(db["activity"].find({}).sort("created_at", -1).limit(100))
    for a in items:
        a["_id"] = str(a["_id"])
    return {"items": items}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.port())
