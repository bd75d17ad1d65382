from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest
from common.utils import hash_secret
from fastapi.testclient import TestClient
from jobboard.errors import AuthorizationError, StoreOperationError
from jobboard.main import create_app
from jobboard.repository import JobBoardRepository
from jobboard.saved_jobs import SavedJobSnapshot, SavedJobsStore
from jobboard.session import RealmUser, SessionCredentials

pytestmark = pytest.mark.integration

REALM_USERS = {
    "seeker": {
        "alice": RealmUser(username="alice", password_sha256=hash_secret("alice-password")),
        "bob": RealmUser(username="bob", password_sha256=hash_secret("bob-password")),
    }
}


@pytest.fixture
def client(tmp_path: Path):
    app = create_app(database_path=str(tmp_path / "jobboard.sqlite3"), realm_users=REALM_USERS)
    with TestClient(app) as test_client:
        yield test_client


def auth_headers(client: TestClient, username: str) -> dict[str, str]:
    response = client.post(
        "/auth/seeker/sign-in",
        json={"username": username, "password": f"{username}-password"},
    )
    return {"x-session-token": response.json()["token"]}


def test_saving_twice_keeps_one_record(client: TestClient) -> None:
    headers = auth_headers(client, "alice")
    job = {"id": 17, "title": "Backend Engineer", "company": "Acme"}

    first = client.post("/api/saved-jobs", headers=headers, json=job)
    second = client.post("/api/saved-jobs", headers=headers, json={**job, "title": "Platform"})
    assert first.json() == {"success": True}
    assert second.json() == {"success": True}

    saved = client.get("/api/saved-jobs", headers=headers).json()["saved_jobs"]
    assert len(saved) == 1
    assert saved[0]["job_id"] == "17"
    assert saved[0]["user_id"] == "seeker:alice"
    assert saved[0]["job_data"]["title"] == "Platform"
    assert client.get("/metrics").json()["events"]["job_saved"] == 2


def test_saved_jobs_are_scoped_to_user(client: TestClient) -> None:
    alice = auth_headers(client, "alice")
    bob = auth_headers(client, "bob")
    client.post("/api/saved-jobs", headers=alice, json={"id": "1", "title": "Analyst"})

    assert client.get("/api/saved-jobs", headers=bob).json() == {"saved_jobs": []}


def test_removing_a_job_never_saved_succeeds(client: TestClient) -> None:
    headers = auth_headers(client, "alice")
    client.post("/api/saved-jobs", headers=headers, json={"id": "1", "title": "Analyst"})

    missing = client.delete("/api/saved-jobs/42", headers=headers)
    removed = client.delete("/api/saved-jobs/1", headers=headers)

    assert missing.json() == {"success": True}
    assert removed.json() == {"success": True}
    assert client.get("/api/saved-jobs", headers=headers).json() == {"saved_jobs": []}


def test_saved_jobs_require_sign_in(client: TestClient) -> None:
    save = client.post("/api/saved-jobs", json={"id": "1"})
    listing = client.get("/api/saved-jobs")
    remove = client.delete("/api/saved-jobs/1")

    for response in (save, listing, remove):
        assert response.status_code == 401
        assert response.json()["detail"] == "Please sign in to save jobs"


def test_saved_jobs_recent_order(client: TestClient) -> None:
    headers = auth_headers(client, "alice")
    for job_id in ("3", "1", "2"):
        client.post("/api/saved-jobs", headers=headers, json={"id": job_id})

    store_order = client.get("/api/saved-jobs", headers=headers).json()["saved_jobs"]
    recent = client.get("/api/saved-jobs", headers=headers, params={"order": "recent"}).json()

    assert [record["job_id"] for record in store_order] == ["1", "2", "3"]
    saved_at = [record["saved_at"] for record in recent["saved_jobs"]]
    assert saved_at == sorted(saved_at, reverse=True)


def test_blank_job_id_is_rejected(client: TestClient) -> None:
    headers = auth_headers(client, "alice")

    response = client.post("/api/saved-jobs", headers=headers, json={"id": "  "})

    assert response.status_code == 422


class BrokenRepository:
    def put_item(self, *_: object, **__: object) -> None:
        raise sqlite3.OperationalError("database is locked")

    def query_items(self, *_: object, **__: object) -> list[dict[str, object]]:
        raise sqlite3.OperationalError("database is locked")

    def delete_item(self, *_: object, **__: object) -> bool:
        raise RuntimeError("Database connection is not initialized")


def test_store_failure_maps_to_bad_gateway(client: TestClient) -> None:
    headers = auth_headers(client, "alice")
    client.app.state.saved_jobs = SavedJobsStore(BrokenRepository())

    save = client.post("/api/saved-jobs", headers=headers, json={"id": "1"})
    listing = client.get("/api/saved-jobs", headers=headers)
    remove = client.delete("/api/saved-jobs/1", headers=headers)

    assert (save.status_code, save.json()["detail"]) == (502, "Failed to save job")
    assert (listing.status_code, listing.json()["detail"]) == (502, "Failed to load saved jobs")
    assert (remove.status_code, remove.json()["detail"]) == (502, "Failed to remove job")


@pytest.mark.unit
def test_store_checks_credentials_before_touching_storage(tmp_path: Path) -> None:
    repository = JobBoardRepository(database_path=str(tmp_path / "saved.sqlite3"))
    repository.connect()
    try:
        store = SavedJobsStore(repository)
        expired = SessionCredentials(
            token="jbs_expired",
            credential_id="cred-1",
            expires_at="2000-01-01T00:00:00+00:00",
        )
        job = SavedJobSnapshot(id="1")

        with pytest.raises(AuthorizationError):
            store.save("seeker:alice", job, credentials=None)
        with pytest.raises(AuthorizationError):
            store.save("seeker:alice", job, credentials=expired)
        with pytest.raises(AuthorizationError):
            store.list_saved(None, credentials=expired)
        assert repository.query_items("saved_jobs", "seeker:alice") == []
    finally:
        repository.close()


@pytest.mark.unit
def test_store_failure_raises_store_operation_error() -> None:
    store = SavedJobsStore(BrokenRepository())
    live = SessionCredentials(
        token="jbs_live",
        credential_id="cred-1",
        expires_at="2999-01-01T00:00:00+00:00",
    )

    with pytest.raises(StoreOperationError, match="Failed to save job"):
        store.save("seeker:alice", SavedJobSnapshot(id="1"), credentials=live)


def test_malformed_stored_record_maps_to_bad_gateway(client: TestClient) -> None:
    headers = auth_headers(client, "alice")
    repository: JobBoardRepository = client.app.state.repository
    repository.put_item("saved_jobs", "seeker:alice", "9", {"job_id": "9"})

    response = client.get("/api/saved-jobs", headers=headers)

    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to load saved jobs"
