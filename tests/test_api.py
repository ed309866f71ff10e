from datetime import datetime, timedelta, timezone

import main
from auth import create_access_token
from services import ReportService


def _category_id(client, headers, name="Food & Dining") -> int:
    categories = client.get("/api/categories", headers=headers).json()["categories"]
    return next(c["id"] for c in categories if c["name"] == name)


def test_register_returns_token_and_public_user(client, register):
    response = client.post(
        "/api/auth/register",
        json={
            "username": "alice",
            "email": "Alice@Example.com",
            "password": "secret123",
            "fullName": "Alice Doe",
            "monthlyBudget": 5000,
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["token"]
    assert body["user"]["email"] == "alice@example.com"
    assert body["user"]["fullName"] == "Alice Doe"
    assert body["user"]["monthlyBudget"] == 5000
    assert body["user"]["currency"] == "INR"
    assert "password" not in body["user"]
    assert "passwordHash" not in body["user"]

    headers = {"Authorization": f"Bearer {body['token']}"}
    categories = client.get("/api/categories", headers=headers).json()["categories"]
    assert len(categories) == 8
    assert all(c["isDefault"] for c in categories)


def test_register_reports_every_invalid_field(client):
    response = client.post(
        "/api/auth/register",
        json={"username": "a!", "email": "not-an-email", "password": "123"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    fields = {error["field"] for error in body["errors"]}
    assert {"username", "email", "password", "fullName"} <= fields


def test_register_duplicate_conflicts(client, register):
    register("alice")

    response = client.post(
        "/api/auth/register",
        json={
            "username": "alice",
            "email": "new@example.com",
            "password": "secret123",
            "fullName": "Alice",
        },
    )

    assert response.status_code == 409
    assert response.json()["success"] is False


def test_login_sets_cookie_and_accepts_email(client, register):
    register("alice")

    response = client.post(
        "/api/auth/login",
        json={"identifier": "alice@example.com", "password": "secret123"},
    )

    assert response.status_code == 200
    assert response.json()["user"]["username"] == "alice"
    assert response.cookies.get("token")
    assert "httponly" in response.headers["set-cookie"].lower()

    profile = client.get("/api/auth/profile")
    assert profile.status_code == 200
    assert profile.json()["user"]["username"] == "alice"


def test_login_with_bad_credentials(client, register):
    register("alice")

    wrong_password = client.post(
        "/api/auth/login", json={"identifier": "alice", "password": "nope-nope"}
    )
    unknown_user = client.post(
        "/api/auth/login", json={"identifier": "ghost", "password": "secret123"}
    )

    for response in (wrong_password, unknown_user):
        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Invalid credentials"}


def test_token_rejections(client, register):
    headers = register("alice")
    user_id = client.get("/api/auth/profile", headers=headers).json()["user"]["id"]
    expired = create_access_token(
        user_id, ttl_hours=1, now=datetime.now(timezone.utc) - timedelta(hours=2)
    )

    missing = client.get("/api/auth/profile")
    garbage = client.get(
        "/api/auth/profile", headers={"Authorization": "Bearer not-a-jwt"}
    )
    stale = client.get(
        "/api/auth/profile", headers={"Authorization": f"Bearer {expired}"}
    )
    ghost = client.get(
        "/api/auth/profile",
        headers={"Authorization": f"Bearer {create_access_token(99999)}"},
    )

    assert missing.status_code == 401
    assert missing.json()["message"] == "Access denied. No token provided."
    assert garbage.json()["message"] == "Invalid token"
    assert stale.json()["message"] == "Token expired"
    assert ghost.status_code == 401
    assert ghost.json()["message"] == "Invalid token"


def test_update_profile(client, register):
    headers = register("alice")

    response = client.put(
        "/api/auth/profile",
        json={"monthlyBudget": 1234.5, "currency": "USD"},
        headers=headers,
    )
    rejected = client.put(
        "/api/auth/profile", json={"fullName": None}, headers=headers
    )

    assert response.status_code == 200
    assert response.json()["user"]["monthlyBudget"] == 1234.5
    assert response.json()["user"]["currency"] == "USD"
    assert rejected.status_code == 400


def test_category_lifecycle(client, register):
    headers = register("alice")

    created = client.post(
        "/api/categories",
        json={"name": "Travel", "color": "#ff8800", "description": "Trips"},
        headers=headers,
    )
    duplicate = client.post("/api/categories", json={"name": "Travel"}, headers=headers)
    bad_color = client.post(
        "/api/categories", json={"name": "Pets", "color": "orange"}, headers=headers
    )

    assert created.status_code == 201
    category = created.json()["category"]
    assert category["isDefault"] is False
    assert category["icon"] == "fas fa-tag"
    assert duplicate.status_code == 409
    assert bad_color.status_code == 400
    assert bad_color.json()["errors"][0]["field"] == "color"

    listed = client.get("/api/categories", headers=headers).json()["categories"]
    assert listed[0]["id"] == category["id"]

    renamed = client.put(
        f"/api/categories/{category['id']}", json={"name": "Holidays"}, headers=headers
    )
    assert renamed.json()["category"]["name"] == "Holidays"

    deleted = client.delete(f"/api/categories/{category['id']}", headers=headers)
    assert deleted.status_code == 200
    missing = client.delete(f"/api/categories/{category['id']}", headers=headers)
    assert missing.status_code == 404


def test_default_and_foreign_categories_cannot_be_deleted(client, register):
    alice = register("alice")
    bob = register("bob")
    food_id = _category_id(client, alice)

    assert client.delete(f"/api/categories/{food_id}", headers=alice).status_code == 404
    assert client.delete(f"/api/categories/{food_id}", headers=bob).status_code == 404
    assert (
        client.put(
            f"/api/categories/{food_id}", json={"name": "Mine"}, headers=bob
        ).status_code
        == 404
    )


def test_expense_lifecycle(client, register):
    headers = register("alice")
    food_id = _category_id(client, headers)

    created = client.post(
        "/api/expenses",
        json={
            "title": "Lunch",
            "amount": 12.5,
            "category": food_id,
            "date": "2024-06-10T12:30:00",
            "paymentMethod": "upi",
            "tags": ["work"],
        },
        headers=headers,
    )
    assert created.status_code == 201
    expense = created.json()["expense"]
    assert expense["amount"] == 12.5
    assert expense["paymentMethod"] == "upi"
    assert expense["category"] == {
        "id": food_id,
        "name": "Food & Dining",
        "color": "#e74c3c",
        "icon": "fas fa-utensils",
    }

    fetched = client.get(f"/api/expenses/{expense['id']}", headers=headers)
    assert fetched.json()["expense"]["title"] == "Lunch"

    updated = client.put(
        f"/api/expenses/{expense['id']}", json={"amount": 20}, headers=headers
    )
    assert updated.json()["expense"]["amount"] == 20
    assert updated.json()["expense"]["title"] == "Lunch"

    null_title = client.put(
        f"/api/expenses/{expense['id']}", json={"title": None}, headers=headers
    )
    assert null_title.status_code == 400
    assert "title cannot be null" in null_title.json()["errors"][0]["message"]

    assert client.delete(f"/api/expenses/{expense['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/expenses/{expense['id']}", headers=headers).status_code == 404


def test_expense_validation_and_ownership(client, register):
    alice = register("alice")
    bob = register("bob")
    alice_food = _category_id(client, alice)
    bob_food = _category_id(client, bob)

    negative = client.post(
        "/api/expenses",
        json={"title": "Lunch", "amount": -5, "category": alice_food},
        headers=alice,
    )
    foreign_category = client.post(
        "/api/expenses",
        json={"title": "Lunch", "amount": 5, "category": bob_food},
        headers=alice,
    )
    assert negative.status_code == 400
    assert negative.json()["errors"][0]["field"] == "amount"
    assert foreign_category.status_code == 400
    assert foreign_category.json()["message"] == "Invalid category"
    assert client.get("/api/expenses", headers=alice).json()["total"] == 0

    expense_id = client.post(
        "/api/expenses",
        json={"title": "Lunch", "amount": 5, "category": alice_food},
        headers=alice,
    ).json()["expense"]["id"]
    assert client.get(f"/api/expenses/{expense_id}", headers=bob).status_code == 404
    assert (
        client.put(
            f"/api/expenses/{expense_id}", json={"title": "Mine"}, headers=bob
        ).status_code
        == 404
    )
    assert client.delete(f"/api/expenses/{expense_id}", headers=bob).status_code == 404


def test_expense_list_pagination_and_query_validation(client, register):
    headers = register("alice")
    food_id = _category_id(client, headers)
    for index in range(15):
        client.post(
            "/api/expenses",
            json={"title": f"Item {index}", "amount": index, "category": food_id},
            headers=headers,
        )

    page = client.get("/api/expenses?page=2&limit=10", headers=headers).json()
    too_big = client.get("/api/expenses?limit=101", headers=headers)
    bad_sort = client.get("/api/expenses?sortBy=secret", headers=headers)
    by_amount = client.get(
        "/api/expenses?sortBy=amount&sortOrder=asc&limit=3", headers=headers
    ).json()

    assert len(page["expenses"]) == 5
    assert page["total"] == 15
    assert page["totalPages"] == 2
    assert page["currentPage"] == 2
    assert page["hasPrevPage"] is True
    assert page["hasNextPage"] is False
    assert too_big.status_code == 400
    assert too_big.json()["errors"][0]["field"] == "limit"
    assert bad_sort.status_code == 400
    assert [e["amount"] for e in by_amount["expenses"]] == [0, 1, 2]


def test_reports_endpoints(client, register):
    headers = register("alice", monthlyBudget=5000)
    food_id = _category_id(client, headers)
    for amount in (1200, 300):
        client.post(
            "/api/expenses",
            json={"title": "Spend", "amount": amount, "category": food_id},
            headers=headers,
        )

    dashboard = client.get("/api/reports/dashboard", headers=headers).json()["data"]
    chart = client.get("/api/reports/monthly-chart", headers=headers).json()
    trends = client.get("/api/reports/trends?period=7", headers=headers).json()

    assert dashboard["monthly"] == {
        "total": 1500,
        "count": 2,
        "budget": 5000,
        "remaining": 3500,
    }
    assert dashboard["categoryBreakdown"][0]["name"] == "Food & Dining"
    assert len(dashboard["recentExpenses"]) == 2
    assert dashboard["currency"]["symbol"] == "₹"
    assert len(chart["data"]) == 12
    assert sum(row["amount"] for row in chart["data"]) == 1500
    assert sum(row["total"] for row in trends["data"]) == 1500
    assert client.get("/api/reports/trends?period=0", headers=headers).status_code == 400


def test_unknown_route_and_service_banner(client):
    missing = client.get("/api/does-not-exist")
    banner = client.get("/")
    health = client.get("/health")

    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "Route not found"}
    assert banner.json()["endpoints"]["expenses"] == "/api/expenses"
    assert health.json()["status"] == "ok"


def test_unexpected_errors_are_enveloped(client, register, monkeypatch):
    headers = register("alice")

    def explode(self, now=None):
        raise RuntimeError("boom")

    monkeypatch.setattr(ReportService, "dashboard", explode)

    response = client.get("/api/reports/dashboard", headers=headers)
    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Something went wrong!"
    assert body["error"] == "boom"
    assert "RuntimeError" in body["stack"]

    monkeypatch.setattr(main.settings, "environment", "production")
    hidden = client.get("/api/reports/dashboard", headers=headers).json()
    assert hidden == {"success": False, "message": "Something went wrong!"}


def test_dev_tools(client, register):
    headers = register("alice")

    seeded = client.post("/api/test/seed-data", headers=headers)
    stats = client.get("/api/test/stats", headers=headers).json()["stats"]

    assert seeded.status_code == 201
    assert seeded.json()["count"] == 5
    assert stats == {"totalUsers": 1, "userCategories": 8, "userExpenses": 5}

    client.post("/api/categories", json={"name": "Travel"}, headers=headers)
    cleared = client.delete("/api/test/clear-data", headers=headers).json()
    assert cleared["deleted"] == {"expenses": 5, "categories": 1}
    stats = client.get("/api/test/stats", headers=headers).json()["stats"]
    assert stats["userExpenses"] == 0
    assert stats["userCategories"] == 8


def test_oversized_numbers_are_validation_errors(client, register):
    headers = register("alice")
    food_id = _category_id(client, headers)

    huge_amount = client.post(
        "/api/expenses",
        json={"title": "Yacht", "amount": 1e18, "category": food_id},
        headers=headers,
    )
    huge_category = client.post(
        "/api/expenses",
        json={"title": "Yacht", "amount": 1, "category": 10**20},
        headers=headers,
    )
    huge_budget = client.put(
        "/api/auth/profile", json={"monthlyBudget": 1e19}, headers=headers
    )
    infinite_budget = client.put(
        "/api/auth/profile", json={"monthlyBudget": "Infinity"}, headers=headers
    )

    for response, field in (
        (huge_amount, "amount"),
        (huge_category, "category"),
        (huge_budget, "monthlyBudget"),
        (infinite_budget, "monthlyBudget"),
    ):
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == field
    assert client.get("/api/expenses", headers=headers).json()["total"] == 0


def test_oversized_ids_and_pages_are_rejected(client, register):
    headers = register("alice")
    huge_id = "99999999999999999999999"

    responses = [
        client.get(f"/api/expenses/{huge_id}", headers=headers),
        client.put(f"/api/expenses/{huge_id}", json={"title": "x"}, headers=headers),
        client.delete(f"/api/expenses/{huge_id}", headers=headers),
        client.put(f"/api/categories/{huge_id}", json={"name": "x"}, headers=headers),
        client.delete(f"/api/categories/{huge_id}", headers=headers),
        client.get("/api/expenses?page=1e20", headers=headers),
        client.get("/api/expenses?page=100000000", headers=headers),
        client.get(f"/api/expenses?category={huge_id}", headers=headers),
    ]

    for response in responses:
        assert response.status_code == 400
        assert response.json()["message"] == "Validation failed"
