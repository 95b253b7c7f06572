"""HTTP surface tests using the Flask test client."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from app import create_app
from config import Config
from journal import PersistenceError
from sqlite_store import SQLiteJournalStore


@pytest.fixture
def client(sqlite_store):
    app = create_app(store=sqlite_store)
    app.config["TESTING"] = True
    return app.test_client()


def test_notes_crud(client) -> None:
    assert client.get("/api/notes").get_json() == []

    resp = client.post("/api/notes", json={"content": "Met a dragon"})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert body["note"]["content"] == "Met a dragon"
    assert body["stats"] == {"level": 1, "xp": 5}

    notes = client.get("/api/notes").get_json()
    assert [n["content"] for n in notes] == ["Met a dragon"]

    assert client.delete(f"/api/notes/{body['id']}").get_json() == {"success": True}
    assert client.delete(f"/api/notes/{body['id']}").status_code == 200
    assert client.get("/api/notes").get_json() == []


def test_validation_errors_are_400(client) -> None:
    resp = client.post("/api/notes", json={"content": "  "})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Content is required"}

    assert client.post("/api/goals", json={}).status_code == 400
    assert client.post("/api/stats/add-xp", json={"amount": "lots"}).status_code == 400


def test_goal_lifecycle(client) -> None:
    created = client.post(
        "/api/goals", json={"title": "Slay dragon", "color": "#3b82f6"}
    ).get_json()
    goal = created["goal"]
    assert goal["status"] == "pending"
    assert goal["subtasks"] == []
    assert goal["color"] == "#3b82f6"

    resp = client.patch(f"/api/goals/{goal['id']}", json={"status": "completed"})
    assert resp.get_json()["goal"]["status"] == "completed"
    assert resp.get_json()["stats"] == {"level": 1, "xp": 60}

    resp = client.patch(f"/api/goals/{goal['id']}", json={"status": "won"})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Invalid status"}

    resp = client.patch(f"/api/goals/{goal['id']}", json={"description": "Cave"})
    assert resp.get_json()["goal"]["description"] == "Cave"
    assert resp.get_json()["goal"]["title"] == "Slay dragon"

    assert client.get(f"/api/goals/{goal['id']}").get_json()["description"] == "Cave"
    assert client.patch("/api/goals/999", json={"title": "x"}).get_json()["goal"] is None
    assert client.get("/api/goals/999").status_code == 404


def test_subtasks_via_api(client) -> None:
    goal = client.post("/api/goals", json={"title": "Slay dragon"}).get_json()["goal"]
    first = client.post(
        f"/api/goals/{goal['id']}/subtasks", json={"title": "Sharpen sword"}
    ).get_json()["subtask"]
    second = client.post(
        f"/api/goals/{goal['id']}/subtasks", json={"title": "Find lair"}
    ).get_json()["subtask"]
    assert first["completed"] is False

    resp = client.patch(f"/api/subtasks/{first['id']}", json={"completed": True})
    assert resp.get_json()["subtask"]["completed"] is True
    assert resp.get_json()["stats"]["xp"] == 20

    assert client.post(
        "/api/goals/999/subtasks", json={"title": "Orphan"}
    ).status_code == 400

    client.delete(f"/api/goals/{goal['id']}")
    assert client.get(f"/api/subtasks/{first['id']}").status_code == 404
    assert client.get(f"/api/subtasks/{second['id']}").status_code == 404
    assert client.delete(f"/api/subtasks/{second['id']}").get_json() == {"success": True}


def test_stats_endpoints(client) -> None:
    assert client.get("/api/stats").get_json() == {"level": 1, "xp": 0}
    client.post("/api/stats/add-xp", json={"amount": 90})
    assert client.post("/api/stats/add-xp", json={"amount": 45}).get_json() == {
        "level": 2,
        "xp": 35,
    }


def test_breakdown_endpoints(client, generator) -> None:
    goal = client.post("/api/goals", json={"title": "Learn guitar"}).get_json()["goal"]
    assert client.get(f"/api/goals/{goal['id']}/breakdown").get_json() == {
        "error": None,
        "state": None,
    }

    resp = client.post(f"/api/goals/{goal['id']}/breakdown")
    assert resp.status_code == 200
    assert len(resp.get_json()["subtasks"]) == 3
    assert resp.get_json()["stats"]["xp"] == 30

    generator.response = "garbage"
    resp = client.post(f"/api/goals/{goal['id']}/breakdown")
    assert resp.status_code == 502
    assert "error" in resp.get_json()
    assert client.get(f"/api/goals/{goal['id']}/breakdown").get_json()["state"] == "failed"
    assert len(client.get(f"/api/goals/{goal['id']}").get_json()["subtasks"]) == 3


def test_export_and_import_round_trip(client) -> None:
    client.post("/api/notes", json={"content": "Met a dragon"})
    goal = client.post("/api/goals", json={"title": "Slay dragon"}).get_json()["goal"]
    client.post(f"/api/goals/{goal['id']}/subtasks", json={"title": "Sharpen sword"})
    exported = client.get("/api/export").get_json()

    client.post("/api/notes", json={"content": "After backup"})
    resp = client.post("/api/import", json=exported)
    assert resp.get_json()["success"] is True

    assert client.get("/api/export").get_json() == exported


def test_import_from_uploaded_file(client) -> None:
    backup = {
        "notes": [{"id": 1, "content": "Restored", "created_at": "2025-05-05T05:05:05"}],
        "goals": [],
        "stats": {"xp": 12, "level": 4},
    }
    data = {"file": (io.BytesIO(json.dumps(backup).encode()), "questlog-backup.json")}
    resp = client.post("/api/import", data=data, content_type="multipart/form-data")
    assert resp.status_code == 200
    assert client.get("/api/stats").get_json() == {"level": 4, "xp": 12}


def test_invalid_backup_is_rejected(client) -> None:
    client.post("/api/notes", json={"content": "Keep me"})

    resp = client.post("/api/import", data="{not json", content_type="application/json")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Invalid backup file"}

    data = {"file": (io.BytesIO(b"\x00garbage"), "backup.json")}
    resp = client.post("/api/import", data=data, content_type="multipart/form-data")
    assert resp.status_code == 400

    assert [n["content"] for n in client.get("/api/notes").get_json()] == ["Keep me"]


def test_backup_with_wrongly_typed_fields_is_400(client) -> None:
    client.post("/api/notes", json={"content": "Keep me"})

    documents = [
        {"goals": [{"id": 1, "title": "x"}], "subtasks": [{"id": 2, "goal_id": [1], "title": "y"}]},
        {"goals": [{"id": 1, "title": "x", "color": 42}]},
        {"notes": [{"id": 1, "content": "a", "created_at": {"day": 1}}]},
    ]
    for document in documents:
        resp = client.post("/api/import", json=document)
        assert resp.status_code == 400
        assert "error" in resp.get_json()

    assert [n["content"] for n in client.get("/api/notes").get_json()] == ["Keep me"]


def test_backup_download(client) -> None:
    client.post("/api/notes", json={"content": "Met a dragon"})
    resp = client.get("/export/backup")
    assert resp.mimetype == "application/json"
    disposition = resp.headers["Content-Disposition"]
    assert disposition.startswith('attachment; filename="questlog-backup-')
    assert json.loads(resp.data)["notes"][0]["content"] == "Met a dragon"


def test_unknown_route_is_json_404(client) -> None:
    resp = client.get("/api/nothing")
    assert resp.status_code == 404
    assert "error" in resp.get_json()


def test_storage_failure_is_500(tmp_path: Path) -> None:
    class BrokenStore(SQLiteJournalStore):
        def list_notes(self):
            raise PersistenceError("disk I/O error")

    app = create_app(store=BrokenStore(str(tmp_path / "q.db")))
    resp = app.test_client().get("/api/notes")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "Storage failure", "message": "disk I/O error"}


def test_app_builds_store_from_config(tmp_path: Path) -> None:
    config = Config(
        {"QUESTLOG_BACKEND": "local", "QUESTLOG_LOCAL_PATH": str(tmp_path / "q.json")}
    )
    client = create_app(config=config).test_client()
    client.post("/api/notes", json={"content": "Stored in a file"})
    assert (tmp_path / "q.json").exists()

    again = create_app(config=config).test_client()
    notes = again.get("/api/notes").get_json()
    assert [n["content"] for n in notes] == ["Stored in a file"]
