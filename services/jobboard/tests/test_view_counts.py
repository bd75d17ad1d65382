from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

import jobboard.fetcher as fetcher_module
import pytest
from common.utils import hash_secret
from fastapi.testclient import TestClient
from jobboard.errors import AuthorizationError, StoreOperationError
from jobboard.main import create_app
from jobboard.repository import JobBoardRepository
from jobboard.session import RealmUser, SessionCredentials
from jobboard.view_counts import (
    SessionViewMarkers,
    ViewCountAdapter,
    ViewRecorder,
    coerce_numeric_id,
)

pytestmark = pytest.mark.integration

JOBS_ENDPOINT = "http://listings.test/jobs"
LIVE = SessionCredentials(
    token="jbs_live",
    credential_id="cred-1",
    expires_at="2999-01-01T00:00:00+00:00",
)


class StubResponse:
    def __init__(self, status_code: int, payload: dict[str, Any]) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> dict[str, Any]:
        return self._payload


class StubAsyncClient:
    async def __aenter__(self) -> StubAsyncClient:
        return self

    async def __aexit__(self, *_: object) -> bool:
        return False

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, str] | None = None,
        **_: object,
    ) -> StubResponse:
        del method, url
        job_id = (params or {}).get("id", "17")
        return StubResponse(200, {"body": [{"job_id": job_id, "title": "Backend Engineer"}]})


@pytest.fixture
def repository(tmp_path: Path):
    repo = JobBoardRepository(database_path=str(tmp_path / "views.sqlite3"))
    repo.connect()
    yield repo
    repo.close()


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(fetcher_module.httpx, "AsyncClient", lambda *_, **__: StubAsyncClient())
    app = create_app(
        database_path=str(tmp_path / "jobboard.sqlite3"),
        jobs_endpoint=JOBS_ENDPOINT,
        realm_users={
            "seeker": {
                "alice": RealmUser(username="alice", password_sha256=hash_secret("pw"))
            }
        },
    )
    with TestClient(app) as test_client:
        yield test_client


def sign_in(client: TestClient) -> str:
    response = client.post("/auth/seeker/sign-in", json={"username": "alice", "password": "pw"})
    return response.json()["token"]


def test_detail_view_counts_once_per_browsing_session(client: TestClient) -> None:
    token = sign_in(client)
    tab_one = {"x-session-token": token, "x-browsing-session": "tab-1"}
    tab_two = {"x-session-token": token, "x-browsing-session": "tab-2"}

    first = client.get("/api/jobs/17", headers=tab_one).json()
    repeat = client.get("/api/jobs/17", headers=tab_one).json()
    other_tab = client.get("/api/jobs/17", headers=tab_two).json()

    assert (first["view_counted"], first["job"]["views"]) == (True, 1)
    assert (repeat["view_counted"], repeat["job"]["views"]) == (False, 1)
    assert (other_tab["view_counted"], other_tab["job"]["views"]) == (True, 2)
    assert client.get("/metrics").json()["events"]["view_counted"] == 2


def test_non_numeric_job_id_is_viewable_but_not_counted(client: TestClient) -> None:
    token = sign_in(client)

    response = client.get(
        "/api/jobs/abc",
        headers={"x-session-token": token, "x-browsing-session": "tab-1"},
    )

    assert response.status_code == 200
    assert response.json()["view_counted"] is False
    assert response.json()["job"]["views"] == 0


@pytest.mark.unit
def test_absent_counter_starts_at_one(repository: JobBoardRepository) -> None:
    adapter = ViewCountAdapter(repository)

    assert adapter.current_views("5") is None
    assert adapter.increment_views("5", credentials=LIVE) == 1
    assert adapter.increment_views(5, credentials=LIVE) == 2
    assert adapter.current_views(5) == 2


@pytest.mark.unit
def test_increment_requires_live_credentials(repository: JobBoardRepository) -> None:
    adapter = ViewCountAdapter(repository)
    expired = LIVE.model_copy(update={"expires_at": "2000-01-01T00:00:00+00:00"})

    with pytest.raises(AuthorizationError):
        adapter.increment_views("5", credentials=None)
    with pytest.raises(AuthorizationError):
        adapter.increment_views("5", credentials=expired)
    assert adapter.current_views("5") is None


@pytest.mark.unit
def test_non_numeric_id_never_reaches_store() -> None:
    class RecordingRepository:
        def __init__(self) -> None:
            self.calls = 0

        def increment_attribute(self, *_: object, **__: object) -> int:
            self.calls += 1
            return 1

    repo = RecordingRepository()
    adapter = ViewCountAdapter(repo)

    assert adapter.increment_views("abc", credentials=LIVE) is None
    assert adapter.increment_views("", credentials=LIVE) is None
    assert repo.calls == 0


@pytest.mark.unit
def test_store_failure_becomes_store_operation_error() -> None:
    class BrokenRepository:
        def increment_attribute(self, *_: object, **__: object) -> int:
            raise sqlite3.OperationalError("disk I/O error")

    adapter = ViewCountAdapter(BrokenRepository())

    with pytest.raises(StoreOperationError, match="Failed to increment view count"):
        adapter.increment_views("5", credentials=LIVE)


@pytest.mark.unit
def test_recorder_does_not_mark_failed_views(repository: JobBoardRepository) -> None:
    recorder = ViewRecorder(ViewCountAdapter(repository), SessionViewMarkers())

    assert recorder.record_view("tab-1", "5", credentials=None) is None
    assert not recorder.markers.has("tab-1", "5")
    assert recorder.record_view("tab-1", "5", credentials=LIVE) == 1
    assert recorder.markers.has("tab-1", "5")
    assert recorder.record_view("tab-1", "5", credentials=LIVE) is None


@pytest.mark.unit
def test_overlapping_views_in_one_session_count_once(repository: JobBoardRepository) -> None:
    class SlowAdapter(ViewCountAdapter):
        def increment_views(self, job_id: object, *, credentials: SessionCredentials | None):
            time.sleep(0.05)
            return super().increment_views(job_id, credentials=credentials)

    recorder = ViewRecorder(SlowAdapter(repository), SessionViewMarkers())
    results: list[int | None] = []

    def view() -> None:
        results.append(recorder.record_view("tab-1", "17", credentials=LIVE))

    threads = [threading.Thread(target=view) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results, key=lambda value: value is not None) == [None, 1]
    assert recorder.adapter.current_views("17") == 1


@pytest.mark.unit
def test_claim_is_granted_once_and_can_be_released() -> None:
    markers = SessionViewMarkers()

    assert markers.claim("tab-1", "5") is True
    assert markers.claim("tab-1", "5") is False
    markers.release("tab-1", "5")
    assert markers.claim("tab-1", "5") is True


@pytest.mark.unit
def test_markers_evict_least_recent_session() -> None:
    markers = SessionViewMarkers(max_sessions=2)
    markers.claim("tab-1", "1")
    markers.claim("tab-2", "1")
    markers.claim("tab-1", "2")
    markers.claim("tab-3", "1")

    assert markers.has("tab-1", "1")
    assert markers.has("tab-3", "1")
    assert not markers.has("tab-2", "1")


@pytest.mark.unit
@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (17, 17),
        ("17", 17),
        (" 42 ", 42),
        ("17.0", 17),
        ("17.5", None),
        ("abc", None),
        (True, None),
    ],
)
def test_coerce_numeric_id(value: object, expected: int | None) -> None:
    assert coerce_numeric_id(value) == expected
