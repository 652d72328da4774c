import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from schemas import Book, LibraryUser
from database import create_document
from stores import BookCatalog, UserStore, ensure_indexes


@pytest.fixture
def mdb():
    database = mongomock.MongoClient(tz_aware=True).db
    ensure_indexes(database)
    return database


@pytest.fixture
def users(mdb):
    return UserStore(mdb)


@pytest.fixture
def books(mdb):
    return BookCatalog(mdb)


@pytest.fixture
def make_user(users):
    def _make(email="reader@example.com", role="user", password="secret1", **kwargs):
        user = LibraryUser(
            name=kwargs.pop("name", "Reader"),
            email=email,
            password_hash=main.hash_password(password),
            role=role,
            **kwargs,
        )
        users.insert_user(user)
        return user
    return _make


@pytest.fixture
def make_book(mdb):
    def _make(title="Dune", access_level="public", **kwargs):
        book = Book(title=title, author=kwargs.pop("author", "Frank Herbert"), access_level=access_level, **kwargs)
        return create_document("book", book, database=mdb)
    return _make


@pytest.fixture
def client(mdb, monkeypatch):
    monkeypatch.setattr(main, "db", mdb)
    return TestClient(main.app)


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {main.make_token(user.id)}"}
    return _headers
