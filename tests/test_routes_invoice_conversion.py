"""
HTTP tests for the visit -> invoice routes.

The app's session factory and settings are swapped for the test
database through FastAPI dependency overrides.
"""

import json

import pytest
from fastapi.testclient import TestClient

from clinic_billing.api.deps import get_db, get_session_factory, get_settings
from clinic_billing.main import app

from factories import make_invoice, make_product, make_visit

URL = "/api/invoices/generate-from-visits"


@pytest.fixture
def client(session_factory, settings):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _frames(body: str):
    out = []
    for block in body.split("\n\n"):
        block = block.strip()
        if not block:
            continue
        assert block.startswith("data: ")
        out.append(json.loads(block[len("data: "):]))
    return out


def test_health(client):
    res = client.get("/")
    assert res.status_code == 200
    assert res.json()["message"] == "Clinic billing API running"


def test_generate_streams_progress_then_complete(client, db):
    arnica = make_product(db, quantity=5)
    make_visit(db, prescriptions=[(arnica, 2)])
    make_visit(db, days=1, amount=250)
    make_visit(db, days=2)
    db.commit()

    res = client.post(URL)

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    assert res.headers["cache-control"] == "no-cache"

    events = _frames(res.text)
    assert events[0]["type"] == "progress"
    assert [e["type"] for e in events].count("complete") == 1
    done = events[-1]
    assert done["type"] == "complete"
    assert done["created"] == 2
    assert done["skipped"] == 1
    assert done["total"] == 3
    assert done["invoicesCreated"][1]["totalAmount"] == 250


def test_generate_twice_is_idempotent(client, db):
    make_visit(db, amount=100)
    db.commit()

    first = _frames(client.post(URL).text)[-1]
    second = _frames(client.post(URL).text)[-1]

    assert first["created"] == 1
    assert second["created"] == 0
    assert second["skipped"] == 1


def test_preview(client, db):
    make_visit(db, id=5, amount=100)
    make_visit(db, id=6, amount=100)
    make_visit(db, id=7)
    make_invoice(db, "INV-000001", notes="Auto-generated (visit ID: 5)")
    # marker for a visit that no longer exists
    make_invoice(db, "INV-000002", notes="(visit ID: 99)")
    db.commit()

    res = client.get(URL + "/preview")

    assert res.status_code == 200
    assert res.json() == {
        "status": True,
        "data": {"total": 3, "alreadyInvoiced": 1, "pending": 2},
        "error": None,
    }


def test_get_on_generate_is_not_allowed(client):
    res = client.get(URL)
    assert res.status_code == 405
    assert res.json()["status"] is False
