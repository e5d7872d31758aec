"""Tests for the /api/backups REST routes."""

import base64
import json
import time

import pytest

PASSPHRASE = "CorrectHorseBattery1"

AUTH = {"X-Session-Token": "test-session-token"}


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def backup_client(manager):
    """FastAPI TestClient with the routes wired to a tmp_path BackupManager."""
    from fastapi.testclient import TestClient
    from strongbox.api.main import app
    from strongbox.api import backup_routes, security

    backup_routes.set_backup_manager(manager)

    old_token = security._SESSION_TOKEN
    security._SESSION_TOKEN = "test-session-token"

    yield TestClient(app)

    security._SESSION_TOKEN = old_token


def _create(client, data=b'{"state": 1}', name=None):
    body = {"data": _b64(data), "passphrase": PASSPHRASE}
    if name is not None:
        body["name"] = name
    resp = client.post("/api/backups", json=body, headers=AUTH)
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestBackupRoutes:

    def test_create_success(self, backup_client):
        data = _create(backup_client, name="API Test")
        assert data["name"] == "API Test"
        assert data["size_bytes"] == len(b'{"state": 1}')
        assert "id" in data
        assert "checksum" in data

    def test_create_unauthorized(self, backup_client):
        resp = backup_client.post(
            "/api/backups",
            json={"data": _b64(b"x"), "passphrase": PASSPHRASE},
        )
        assert resp.status_code == 401

    def test_create_wrong_token(self, backup_client):
        resp = backup_client.get("/api/backups", headers={"X-Session-Token": "nope"})
        assert resp.status_code == 401

    def test_create_short_passphrase(self, backup_client):
        resp = backup_client.post(
            "/api/backups",
            json={"data": _b64(b"x"), "passphrase": "short"},
            headers=AUTH,
        )
        assert resp.status_code == 422

    def test_create_invalid_base64(self, backup_client):
        resp = backup_client.post(
            "/api/backups",
            json={"data": "***not-base64***", "passphrase": PASSPHRASE},
            headers=AUTH,
        )
        assert resp.status_code == 422

    def test_create_too_large(self, backup_client, manager):
        manager.config.max_backup_size_bytes = 4
        resp = backup_client.post(
            "/api/backups",
            json={"data": _b64(b"12345"), "passphrase": PASSPHRASE},
            headers=AUTH,
        )
        assert resp.status_code == 413

    def test_list_empty(self, backup_client):
        resp = backup_client.get("/api/backups", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json() == {"backups": [], "total": 0}

    def test_list_after_create(self, backup_client):
        created = _create(backup_client)
        resp = backup_client.get("/api/backups", headers=AUTH)
        data = resp.json()
        assert data["total"] == 1
        assert data["backups"][0]["id"] == created["id"]

    def test_get_info(self, backup_client):
        created = _create(backup_client, name="Info")
        resp = backup_client.get(f"/api/backups/{created['id']}", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["name"] == "Info"

    def test_get_info_not_found(self, backup_client):
        resp = backup_client.get("/api/backups/nonexistent", headers=AUTH)
        assert resp.status_code == 404

    def test_restore_roundtrip(self, backup_client):
        payload = b'{"orders": [1, 2, 3]}'
        created = _create(backup_client, data=payload)
        resp = backup_client.post(
            f"/api/backups/{created['id']}/restore",
            json={"passphrase": PASSPHRASE},
            headers=AUTH,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert base64.b64decode(body["data"]) == payload
        assert body["size_bytes"] == len(payload)

    def test_restore_wrong_passphrase(self, backup_client):
        created = _create(backup_client)
        resp = backup_client.post(
            f"/api/backups/{created['id']}/restore",
            json={"passphrase": "WrongPassphrase99"},
            headers=AUTH,
        )
        assert resp.status_code == 400

    def test_restore_not_found(self, backup_client):
        resp = backup_client.post(
            "/api/backups/nonexistent/restore",
            json={"passphrase": PASSPHRASE},
            headers=AUTH,
        )
        assert resp.status_code == 404

    def test_restore_missing_blob_conflict(self, backup_client, manager):
        created = _create(backup_client)
        manager.blob_store.delete(created["id"])
        resp = backup_client.post(
            f"/api/backups/{created['id']}/restore",
            json={"passphrase": PASSPHRASE},
            headers=AUTH,
        )
        assert resp.status_code == 409

    def test_restore_unknown_format_conflict(self, backup_client, manager):
        created = _create(backup_client)
        path = manager.blob_store.path_for(created["id"])
        blob = json.loads(path.read_text())
        blob["format_version"] = "9.0.0"
        path.write_text(json.dumps(blob))
        resp = backup_client.post(
            f"/api/backups/{created['id']}/restore",
            json={"passphrase": PASSPHRASE},
            headers=AUTH,
        )
        assert resp.status_code == 409
        assert "9.0.0" in resp.json()["detail"]

    def test_verify(self, backup_client):
        created = _create(backup_client)
        ok = backup_client.post(
            f"/api/backups/{created['id']}/verify",
            json={"passphrase": PASSPHRASE},
            headers=AUTH,
        )
        bad = backup_client.post(
            f"/api/backups/{created['id']}/verify",
            json={"passphrase": "WrongPassphrase99"},
            headers=AUTH,
        )
        assert ok.json() == {"backup_id": created["id"], "valid": True}
        assert bad.json()["valid"] is False

    def test_stats(self, backup_client):
        _create(backup_client, data=b"x" * 10)
        _create(backup_client, data=b"x" * 20)
        resp = backup_client.get("/api/backups/stats", headers=AUTH)
        assert resp.status_code == 200
        stats = resp.json()
        assert stats["total_backups"] == 2
        assert stats["total_size"] == 30
        assert stats["average_size"] == 15

    def test_stats_empty(self, backup_client):
        stats = backup_client.get("/api/backups/stats", headers=AUTH).json()
        assert stats["total_backups"] == 0
        assert stats["oldest_backup"] is None

    def test_retention(self, backup_client, clock):
        _create(backup_client)
        clock.advance(days=31)
        resp = backup_client.post("/api/backups/retention", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["expired"] == 1

    def test_timeout_returns_504(self, backup_client, manager, monkeypatch):
        manager.config.operation_timeout_seconds = 0.05

        def slow_list():
            time.sleep(0.5)
            return []

        monkeypatch.setattr(manager, "list_backups", slow_list)
        resp = backup_client.get("/api/backups", headers=AUTH)
        assert resp.status_code == 504

    def test_token_not_initialized(self, backup_client):
        from strongbox.api import security

        security._SESSION_TOKEN = None
        resp = backup_client.get("/api/backups", headers=AUTH)
        assert resp.status_code == 503

    def test_session_endpoint(self, backup_client):
        resp = backup_client.get("/api/session")
        assert resp.status_code == 200
        assert resp.json() == {"session_token": "test-session-token"}


class TestAppLifecycle:

    def test_startup_wires_manager_and_scheduler(self, tmp_path, monkeypatch):
        from fastapi.testclient import TestClient
        from strongbox.api import backup_routes, security
        from strongbox.api.main import app

        monkeypatch.setenv("STRONGBOX_STORAGE_DIR", str(tmp_path / "served"))
        monkeypatch.setenv("STRONGBOX_KDF_ITERATIONS", "1000")
        monkeypatch.setenv("STRONGBOX_SESSION_TOKEN", "pinned-token")
        old_token = security._SESSION_TOKEN
        try:
            with TestClient(app) as client:
                assert client.get("/api/session").json()["session_token"] == "pinned-token"
                assert app.state.retention_scheduler.running
                created = client.post(
                    "/api/backups",
                    json={"data": _b64(b"served"), "passphrase": PASSPHRASE},
                    headers={"X-Session-Token": "pinned-token"},
                )
                assert created.status_code == 200
                assert backup_routes.get_backup_manager().config.storage_directory == (
                    tmp_path / "served"
                )
            assert not app.state.retention_scheduler.running
        finally:
            security._SESSION_TOKEN = old_token
