import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db

HEADERS = {"X-session-ID": "api-session"}


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _post_txn(client, date: str, amount: int, kind: str, headers=HEADERS):
    return client.post(
        "/api/v1/transactions",
        json={
            "occurred_at": date,
            "type": kind,
            "amount_cents": amount,
            "external_iban": "NL39RABO0300065264",
            "description": "University of Twente",
        },
        headers=headers,
    )


def test_requests_without_session_header_are_unauthorized(client) -> None:
    assert client.get("/api/v1/messages").status_code == 401
    assert client.get("/api/v1/transactions").status_code == 401


def test_submit_and_fetch_transaction(client) -> None:
    created = _post_txn(client, "2018-05-28T12:00:00.000Z", 120_000, "deposit")

    assert created.status_code == 201
    body = created.json()
    assert body["date"] == "2018-05-28T12:00:00.000Z"
    assert body["category"] is None
    assert [m["type"] for m in body["messages"]] == ["info"]

    fetched = client.get(f"/api/v1/transactions/{body['id']}", headers=HEADERS)
    assert fetched.status_code == 200
    assert fetched.json()["amount_cents"] == 120_000

    other = client.get(
        f"/api/v1/transactions/{body['id']}", headers={"X-session-ID": "someone-else"}
    )
    assert other.status_code == 404


def test_saving_goals_flow_through_balance_history(client) -> None:
    _post_txn(client, "2018-05-28T12:00:00.000Z", 120_000, "deposit")
    goals_in = (("Holiday", 25_000, 0), ("House", 50_000, 100_000))
    for name, per_month, minimum in goals_in:
        response = client.post(
            "/api/v1/savingGoals",
            json={
                "name": name,
                "target_cents": 1_000_000,
                "save_per_month_cents": per_month,
                "min_balance_cents": minimum,
            },
            headers=HEADERS,
        )
        assert response.status_code == 201
    _post_txn(client, "2018-06-02T12:00:00.000Z", 10_000, "withdrawal")

    history = client.get(
        "/api/v1/balance/history", params={"intervals": 1}, headers=HEADERS
    )
    goals = client.get("/api/v1/savingGoals", headers=HEADERS).json()

    assert history.status_code == 200
    assert history.json()[0]["close"] == 85_000
    assert [g["balance_cents"] for g in goals] == [25_000, 0]


def test_balance_history_rejects_bad_parameters(client) -> None:
    bad_params = (
        {"intervals": 0},
        {"intervals": "abc"},
        {"intervals": 1_000_000_000},
        {"interval": "fortnight"},
    )
    for params in bad_params:
        response = client.get(
            "/api/v1/balance/history", params=params, headers=HEADERS
        )
        assert response.status_code == 405


def test_invalid_bodies_are_rejected(client) -> None:
    not_json = client.post(
        "/api/v1/savingGoals", content="INVALID_BODY", headers=HEADERS
    )
    missing_fields = client.post(
        "/api/v1/paymentRequests", json={"description": "x"}, headers=HEADERS
    )
    extra_field = client.post(
        "/api/v1/categoryRules",
        json={"category_id": 1, "priority": 2},
        headers=HEADERS,
    )
    negative = _post_txn(client, "2018-05-28T12:00:00.000Z", -5, "deposit")
    oversized = _post_txn(client, "2018-05-28T12:00:00.000Z", 10**20, "deposit")

    assert not_json.status_code == 405
    assert missing_fields.status_code == 405
    assert extra_field.status_code == 405
    assert negative.status_code == 405
    assert oversized.status_code == 405


def test_category_rule_lifecycle(client) -> None:
    category = client.post(
        "/api/v1/categories", json={"name": "Salary"}, headers=HEADERS
    ).json()
    rule = client.post(
        "/api/v1/categoryRules",
        json={
            "description": "Twente",
            "iban": "",
            "type": "",
            "category_id": category["id"],
            "apply_on_history": False,
        },
        headers=HEADERS,
    )
    assert rule.status_code == 201
    rule_id = rule.json()["id"]
    assert rule.json()["type"] == ""

    txn = _post_txn(client, "2018-05-28T12:00:00.000Z", 1_000, "deposit").json()
    assert txn["category"] == {"id": category["id"], "name": "Salary"}

    deleted = client.delete(f"/api/v1/categoryRules/{rule_id}", headers=HEADERS)
    assert deleted.status_code == 204
    missing = client.get(f"/api/v1/categoryRules/{rule_id}", headers=HEADERS)
    assert missing.status_code == 404


def test_payment_request_and_message_endpoints(client) -> None:
    created = client.post(
        "/api/v1/paymentRequests",
        json={
            "description": "Dinner",
            "due_date": "2018-07-01T00:00:00.000Z",
            "amount_cents": 2_000,
            "number_of_requests": 1,
        },
        headers=HEADERS,
    )
    assert created.status_code == 201
    _post_txn(client, "2018-06-15T10:00:00.000Z", 2_000, "deposit")

    requests_ = client.get("/api/v1/paymentRequests", headers=HEADERS).json()
    assert requests_[0]["filled"] is True
    assert len(requests_[0]["transactions"]) == 1

    messages = client.get("/api/v1/messages", headers=HEADERS).json()
    assert [m["message"] for m in messages] == [
        "Payment request 'Dinner' has been filled",
        "Your balance reached a new high: 20.00",
    ]

    marked = client.put(f"/api/v1/messages/{messages[0]['id']}", headers=HEADERS)
    assert marked.status_code == 200
    assert marked.json()["read"] is True
    assert client.put("/api/v1/messages/9999", headers=HEADERS).status_code == 404
