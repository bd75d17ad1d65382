from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from common.utils import now_utc_iso
from pydantic import BaseModel, ValidationError, field_validator

from jobboard.errors import AuthorizationError, StoreOperationError
from jobboard.repository import JobBoardRepository
from jobboard.session import SessionCredentials

SAVED_JOBS_TABLE = "saved_jobs"
SAVE_SIGN_IN_REQUIRED = "Please sign in to save jobs"
LOGGER = logging.getLogger("jobboard.store")


class SavedJobSnapshot(BaseModel):
    id: str
    title: str | None = None
    company: str | None = None
    location: str | None = None
    salary: str | None = None
    url: str | None = None
    application_url: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        if not text:
            raise ValueError("Saved jobs need a job id.")
        return text


class SavedJobRecord(BaseModel):
    user_id: str
    job_id: str
    saved_at: str
    job_data: SavedJobSnapshot


def require_store_access(user_id: str | None, credentials: SessionCredentials | None) -> str:
    if not user_id or credentials is None or not credentials.token or not credentials.is_live():
        raise AuthorizationError(SAVE_SIGN_IN_REQUIRED)
    return user_id


class SavedJobsStore:
    """Per-user saved jobs keyed by ``(user_id, job_id)``; saving again overwrites."""

    def __init__(self, repository: JobBoardRepository) -> None:
        self.repository = repository

    def save(
        self,
        user_id: str | None,
        job: SavedJobSnapshot,
        *,
        credentials: SessionCredentials | None,
    ) -> dict[str, bool]:
        user_id = require_store_access(user_id, credentials)
        record = SavedJobRecord(
            user_id=user_id,
            job_id=job.id,
            saved_at=now_utc_iso(),
            job_data=job,
        )
        try:
            self.repository.put_item(SAVED_JOBS_TABLE, user_id, job.id, record.model_dump())
        except (sqlite3.Error, RuntimeError) as exc:
            LOGGER.exception(json.dumps({"event": "saved_job_put_failed", "job_id": job.id}))
            raise StoreOperationError("Failed to save job") from exc
        return {"success": True}

    def list_saved(
        self,
        user_id: str | None,
        *,
        credentials: SessionCredentials | None,
    ) -> list[SavedJobRecord]:
        user_id = require_store_access(user_id, credentials)
        try:
            items = self.repository.query_items(SAVED_JOBS_TABLE, user_id)
            return [SavedJobRecord(**item) for item in items]
        except (sqlite3.Error, RuntimeError, ValidationError) as exc:
            LOGGER.exception(json.dumps({"event": "saved_job_query_failed"}))
            raise StoreOperationError("Failed to load saved jobs") from exc

    def remove(
        self,
        user_id: str | None,
        job_id: str,
        *,
        credentials: SessionCredentials | None,
    ) -> dict[str, bool]:
        user_id = require_store_access(user_id, credentials)
        try:
            self.repository.delete_item(SAVED_JOBS_TABLE, user_id, str(job_id))
        except (sqlite3.Error, RuntimeError) as exc:
            LOGGER.exception(json.dumps({"event": "saved_job_delete_failed", "job_id": job_id}))
            raise StoreOperationError("Failed to remove job") from exc
        return {"success": True}
