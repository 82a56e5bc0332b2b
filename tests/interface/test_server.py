import asyncio

import pytest
from fastapi.testclient import TestClient

from increading.application.review_manager import ReviewManager
from increading.consts import VERSION
from increading.domain.errors import NotFoundError, PersistenceError, ValidationError
from increading.infrastructure.adapters.vault_store import VaultNoteStore
from increading.infrastructure.db.repository import SQLiteRepository
from increading.server import app, get_manager, to_http_error

from conftest import FakeClock, StubScheduler, write_note

SOURCE_TEXT = "Enzymes lower the {{activation energy}} of a reaction."


@pytest.fixture
def server_manager(tmp_path, vault):
    repo = asyncio.run(SQLiteRepository.start(tmp_path / "data" / "server.sqlite"))
    manager = ReviewManager(repo, VaultNoteStore(vault), StubScheduler(), clock=FakeClock())
    yield manager
    repo.close()


@pytest.fixture
def client(server_manager, vault):
    write_note(vault, "notes/enzymes.md", SOURCE_TEXT)
    app.dependency_overrides[get_manager] = lambda: server_manager
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION


def test_get_version(client):
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": VERSION}


def test_import_and_due(client):
    response = client.post("/import", json={"source": "notes/enzymes.md", "priority": 30})
    assert response.status_code == 201
    article = response.json()
    assert article["kind"] == "article"
    assert article["reference"] == "increading/articles/enzymes.md"
    assert article["priority"] == 30

    response = client.get("/due", params={"due_by": "2024-03-11T00:00:00Z"})
    assert response.status_code == 200
    data = response.json()
    assert [item["id"] for item in data["all"]] == [article["id"]]
    assert data["articles"][0]["note"].endswith("enzymes.md")
    assert data["orphans"] == []

    response = client.post("/import", json={"source": "notes/enzymes.md"})
    assert response.status_code == 409


def test_import_missing_note(client):
    response = client.post("/import", json={"source": "nowhere.md"})
    assert response.status_code == 404


def test_snippet_lifecycle(client):
    response = client.post("/snippets", json={"source": "notes/enzymes.md", "start": 0, "end": 7})
    assert response.status_code == 201
    snippet = response.json()
    assert snippet["priority"] == 25

    response = client.get("/snippets/by-reference", params={"reference": snippet["reference"]})
    assert response.json()["id"] == snippet["id"]

    response = client.post(f"/snippets/{snippet['id']}/review", json={})
    assert response.status_code == 200
    assert response.json()["due"] != snippet["due"]

    response = client.post(f"/snippets/{snippet['id']}/prioritize", json={"priority": 51})
    assert response.status_code == 422

    response = client.post(f"/snippets/{snippet['id']}/dismiss")
    assert response.json() == {"ok": True}
    assert client.get(f"/snippets/{snippet['id']}").json()["dismissed"] is True
    assert client.get("/snippets").json() == []


def test_bad_selection_is_rejected(client):
    response = client.post("/snippets", json={"source": "notes/enzymes.md", "start": 5, "end": 2})
    assert response.status_code == 422


def test_text_review_rejects_negative_interval(client):
    response = client.post("/articles/1/review", json={"interval_days": -1})
    assert response.status_code == 422


def test_text_review_rejects_non_finite_and_huge_intervals(client):
    article = client.post("/import", json={"source": "notes/enzymes.md"}).json()
    url = f"/articles/{article['id']}/review"
    for raw in ("NaN", "Infinity"):
        response = client.post(
            url, content=f'{{"interval_days": {raw}}}', headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 422

    # Too large for a timedelta, and too far out for a due date
    assert client.post(url, json={"interval_days": 1e12}).status_code == 422
    assert client.post(url, json={"interval_days": 3e6}).status_code == 422
    assert client.get(f"/articles/{article['id']}").json()["due"] == article["due"]


def test_unknown_items(client):
    assert client.get("/snippets/42").status_code == 404
    assert client.get("/articles/42").status_code == 404
    assert client.get("/cards/card_nope").status_code == 404
    assert client.post("/articles/42/dismiss").status_code == 404


def test_card_review_flow(client):
    response = client.post("/cards", json={"source": "notes/enzymes.md", "start": 0, "end": len(SOURCE_TEXT)})
    assert response.status_code == 201
    card = response.json()
    assert card["state"] == "New"

    review_url = f"/cards/{card['id']}/review"
    response = client.post(review_url, json={"grade": 3, "reps": 0})
    assert response.status_code == 200
    assert response.json()["reps"] == 1
    assert response.json()["state"] == "Review"

    # A second client that still thinks the card is unreviewed.
    response = client.post(review_url, json={"grade": 4, "reps": 0})
    assert response.status_code == 409

    history = client.get(f"/cards/{card['id']}/history").json()
    assert [h["rating"] for h in history] == ["Good"]

    response = client.post(review_url, json={"grade": 7})
    assert response.status_code == 422


def test_card_faces(client):
    card = client.post(
        "/cards", json={"source": "notes/enzymes.md", "start": 0, "end": len(SOURCE_TEXT)}
    ).json()
    response = client.get(f"/cards/{card['id']}/faces")
    assert response.status_code == 200
    assert response.json() == {
        "id": card["id"],
        "front": "Enzymes lower the [...] of a reaction.",
        "back": "activation energy",
    }
    assert client.get("/cards/card_nope/faces").status_code == 404


def test_card_without_cloze(client):
    response = client.post("/cards", json={"source": "notes/enzymes.md", "start": 0, "end": 7})
    assert response.status_code == 422


def test_note_text(client):
    article = client.post("/import", json={"source": "notes/enzymes.md"}).json()
    response = client.get(f"/notes/article/{article['id']}")
    assert response.status_code == 200
    assert response.json()["text"].endswith(SOURCE_TEXT)
    assert client.get("/notes/snippet/abc").status_code == 422


def test_rename_article(client, vault):
    article = client.post("/import", json={"source": "notes/enzymes.md"}).json()
    response = client.post(f"/articles/{article['id']}/rename", json={"name": "Catalysis"})
    assert response.status_code == 200
    assert response.json()["reference"] == "increading/articles/Catalysis.md"
    assert (vault / "increading" / "articles" / "Catalysis.md").exists()


def test_orphans(client, vault):
    article = client.post("/import", json={"source": "notes/enzymes.md"}).json()
    (vault / article["reference"]).unlink()

    assert client.get("/orphans").json() == [
        {"kind": "article", "reference": article["reference"], "id": article["id"]}
    ]
    assert client.post("/orphans/dismiss").json() == {"dismissed": 1}
    assert client.get("/orphans").json() == []


def test_error_mapping():
    assert to_http_error(ValidationError("bad")).status_code == 422
    assert to_http_error(NotFoundError("card", "x")).status_code == 404
    assert to_http_error(PersistenceError("disk")).status_code == 500
