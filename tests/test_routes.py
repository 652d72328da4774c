import main


def test_root(client):
    assert client.get("/").json()["status"] == "ok"


def test_register_login_me(client):
    res = client.post("/auth/register", json={"name": "Ann", "email": "Ann@example.com", "password": "secret1"})
    assert res.status_code == 200
    token = res.json()["access_token"]

    res = client.post("/auth/register", json={"name": "Ann", "email": "ann@example.com", "password": "secret1"})
    assert res.status_code == 400
    assert res.json()["error"] == "duplicate_entry"

    res = client.post("/auth/login", data={"username": "ann@example.com", "password": "wrong!"})
    assert res.status_code == 401
    res = client.post("/auth/login", data={"username": "ann@example.com", "password": "secret1"})
    assert res.status_code == 200

    me = client.get("/me", headers={"Authorization": f"Bearer {token}"}).json()["data"]
    assert me["email"] == "ann@example.com"
    assert me["role"] == "user"
    assert "password_hash" not in me
    assert me["last_login"] is not None


def test_short_password_rejected(client):
    res = client.post("/auth/register", json={"name": "Ann", "email": "a@example.com", "password": "123"})
    assert res.status_code == 400
    body = res.json()
    assert body["success"] is False
    assert body["error"] == "validation_error"
    assert body["message"].startswith("password:")


def test_bad_token(client):
    res = client.get("/me", headers={"Authorization": "Bearer nope"})
    assert res.status_code == 401
    assert res.json() == {"success": False, "message": "Invalid or expired token", "error": "unauthenticated"}
    res = client.get("/me")
    assert res.status_code == 401
    assert res.json()["error"] == "unauthenticated"


def test_inactive_user_cannot_login(client, make_user):
    make_user(email="gone@example.com", is_active=False)
    res = client.post("/auth/login", data={"username": "gone@example.com", "password": "secret1"})
    assert res.status_code == 401


def test_change_password(client, make_user, auth_headers):
    user = make_user()
    headers = auth_headers(user)
    res = client.post("/me/change-password", headers=headers,
                      json={"currentPassword": "wrong", "newPassword": "newsecret"})
    assert res.status_code == 400
    assert res.json()["error"] == "validation_error"
    res = client.post("/me/change-password", headers=headers,
                      json={"currentPassword": "secret1", "newPassword": "newsecret"})
    assert res.json()["success"] is True
    res = client.post("/auth/login", data={"username": user.email, "password": "newsecret"})
    assert res.status_code == 200


def test_reading_list_flow(client, make_user, make_book, auth_headers):
    headers = auth_headers(make_user())
    bid = make_book()

    res = client.post("/reading-list", headers=headers, json={"bookId": bid, "notes": "holiday"})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["data"][0]["book_id"] == bid

    res = client.post("/reading-list", headers=headers, json={"bookId": bid})
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "Book already in reading list", "error": "duplicate_entry"}

    res = client.put(f"/reading-list/{bid}", headers=headers, json={"progress": 45})
    assert res.json()["data"]["progress"] == 45
    res = client.put(f"/reading-list/{bid}", headers=headers, json={"progress": 150})
    assert res.status_code == 200
    assert res.json()["data"]["progress"] == 45

    res = client.post(f"/reading-list/{bid}/favorite", headers=headers)
    assert res.json()["data"] == {"isFavorite": True}
    assert res.json()["message"] == "Book added to favorites"

    stats = client.get("/reading-list/stats", headers=headers).json()["data"]
    assert stats == {"totalBooks": 1, "readingNow": 1, "completed": 0, "notStarted": 0, "favorites": 1}

    res = client.delete(f"/reading-list/{bid}", headers=headers)
    assert res.json()["data"] == []
    res = client.delete(f"/reading-list/{bid}", headers=headers)
    assert res.status_code == 404
    assert res.json()["error"] == "not_found"


def test_unknown_book_is_not_found(client, make_user, auth_headers):
    headers = auth_headers(make_user())
    res = client.post("/reading-list", headers=headers, json={"bookId": "000000000000000000000000"})
    assert res.status_code == 404
    assert res.json()["message"] == "Book not found"


def test_favorites_and_progress(client, make_user, make_book, auth_headers):
    headers = auth_headers(make_user())
    bid = make_book()
    for _ in range(2):
        res = client.post("/favorites", headers=headers, json={"bookId": bid})
        assert res.json()["data"] == [bid]
    assert [b["title"] for b in client.get("/favorites", headers=headers).json()["data"]] == ["Dune"]
    assert client.delete(f"/favorites/{bid}", headers=headers).json()["data"] == []

    res = client.put("/reading-progress", headers=headers, json={"bookId": bid, "currentPage": 33})
    assert res.json()["data"]["last_page"] == 33
    res = client.post("/reading-complete", headers=headers, json={"bookId": bid})
    assert res.json()["data"] == {"totalBooksRead": 1}

    stats = client.get("/stats/personal", headers=headers).json()["data"]
    assert stats["totalBooksRead"] == 1
    assert stats["currentlyReading"] == []


def test_downloads(client, make_user, make_book, auth_headers):
    reader = auth_headers(make_user(email="reader@example.com"))
    vip = auth_headers(make_user(email="vip@example.com", role="premium"))
    public_id = make_book(title="Open", file_url="/files/open.pdf")
    premium_id = make_book(title="Closed", access_level="premium")

    for _ in range(3):
        assert client.post("/track-download", headers=reader, json={"bookId": public_id}).status_code == 200
    res = client.post(f"/books/{public_id}/download", headers=reader)
    assert res.json()["data"]["download_url"] == "/files/open.pdf"

    downloads = client.get("/downloads", headers=reader).json()["data"]
    assert len(downloads) == 1
    assert downloads[0]["download_count"] == 4

    res = client.post("/track-download", headers=reader, json={"bookId": premium_id})
    assert res.status_code == 403
    assert res.json()["error"] == "forbidden"
    assert client.post("/track-download", headers=vip, json={"bookId": premium_id}).status_code == 200

    assert main.catalog().resolve(public_id)["download_count"] == 4
    assert main.catalog().resolve(premium_id)["download_count"] == 1


def test_book_view_counts(client, make_book):
    bid = make_book()
    assert client.get(f"/books/{bid}").json()["view_count"] == 1
    assert client.get(f"/books/{bid}").json()["view_count"] == 2
    assert client.get("/books/bogus").status_code == 404


def test_book_admin_routes(client, make_user, auth_headers):
    admin = auth_headers(make_user(email="admin@example.com", role="admin"))
    reader = auth_headers(make_user(email="reader@example.com"))
    book = {"title": "Emma", "author": "Jane Austen", "category": "Fiction", "pages": 300}

    assert client.post("/books", headers=reader, json=book).status_code == 403
    bid = client.post("/books", headers=admin, json=book).json()["id"]

    assert client.put(f"/books/{bid}", headers=admin, json={"featured": True}).json() == {"updated": True}
    items = client.post("/books/search", json={"q": "emma", "featured": True}).json()["items"]
    assert [b["title"] for b in items] == ["Emma"]

    assert client.delete(f"/books/{bid}", headers=admin).json() == {"deleted": True}
    assert client.delete(f"/books/{bid}", headers=admin).status_code == 404


def test_admin_user_management(client, make_user, auth_headers):
    admin_user = make_user(email="admin@example.com", role="admin")
    admin = auth_headers(admin_user)
    target = make_user(email="target@example.com")

    assert client.get("/admin/users", headers=auth_headers(target)).status_code == 403

    listing = client.get("/admin/users", headers=admin, params={"limit": 1}).json()["data"]
    assert listing["total"] == 2
    assert listing["totalPages"] == 2
    assert len(listing["users"]) == 1

    stats = client.get("/admin/users/stats", headers=admin).json()["data"]
    assert stats["totalUsers"] == 2
    assert stats["activeUsers"] == 2

    res = client.put(f"/admin/users/{target.id}", headers=admin, json={"role": "premium", "isActive": False})
    assert res.json()["data"]["role"] == "premium"
    assert res.json()["data"]["is_active"] is False
    assert client.get("/me", headers=auth_headers(target)).status_code == 401

    assert client.delete(f"/admin/users/{target.id}", headers=admin).json()["success"] is True
    assert client.get(f"/admin/users/{target.id}", headers=admin).status_code == 404


def test_update_profile(client, make_user, auth_headers):
    headers = auth_headers(make_user())
    res = client.put("/me", headers=headers, json={"name": "New Name", "preferences": {"theme": "dark"}})
    data = res.json()["data"]
    assert data["name"] == "New Name"
    assert data["preferences"] == {"notifications": True, "theme": "dark"}


def test_unusable_progress_keeps_other_fields(client, mdb, make_user, make_book, auth_headers):
    user = make_user()
    headers = auth_headers(user)
    bid = make_book()
    client.post("/reading-list", headers=headers, json={"bookId": bid})
    client.put(f"/reading-list/{bid}", headers=headers, json={"progress": 20})
    before = main.user_store().load_user(user.id).find_entry(bid)

    for progress in ("abc", 45.5, None):
        res = client.put(f"/reading-list/{bid}", headers=headers, json={"progress": progress, "notes": f"n-{progress}"})
        assert res.status_code == 200
        assert res.json()["data"]["notes"] == f"n-{progress}"
        assert res.json()["data"]["progress"] == 20

    after = main.user_store().load_user(user.id).find_entry(bid)
    assert after.progress == 20
    assert after.last_read == before.last_read


def test_malformed_payload_uses_error_envelope(client, make_user, auth_headers):
    headers = auth_headers(make_user())
    for path in ("/reading-list", "/track-download", "/favorites"):
        res = client.post(path, headers=headers, json={})
        assert res.status_code == 400
        body = res.json()
        assert body["success"] is False
        assert body["error"] == "validation_error"
        assert "bookId" in body["message"]


def test_admin_routes_refuse_non_admin_with_envelope(client, make_user, auth_headers):
    headers = auth_headers(make_user())
    for method, path in (("get", "/admin/users"), ("get", "/admin/users/stats"), ("get", "/admin/activity")):
        res = getattr(client, method)(path, headers=headers)
        assert res.status_code == 403
        assert res.json() == {"success": False, "message": "Admins only", "error": "forbidden"}
