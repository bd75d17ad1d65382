from __future__ import annotations

import json
import secrets
import sqlite3
import threading
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from common.utils import hash_secret, now_utc_iso, parse_iso_datetime
from pydantic import BaseModel


class StoredCredential(BaseModel):
    credential_id: str
    realm: str
    user_id: str
    issued_at: str
    expires_at: str
    revoked_at: str | None = None
    last_used_at: str | None = None


class JobBoardRepository:
    """SQLite-backed keyed document store plus the session credential table.

    Documents are addressed by ``(table, partition_key, sort_key)``; tables
    without a sort key use the empty string.
    """

    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    table_name TEXT NOT NULL,
                    partition_key TEXT NOT NULL,
                    sort_key TEXT NOT NULL DEFAULT '',
                    body_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (table_name, partition_key, sort_key)
                );

                CREATE TABLE IF NOT EXISTS session_credentials (
                    credential_id TEXT PRIMARY KEY,
                    token_hash TEXT NOT NULL UNIQUE,
                    realm TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    issued_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    revoked_at TEXT,
                    last_used_at TEXT
                );
                """
            )
            self._connection.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def put_item(
        self,
        table: str,
        partition_key: str,
        sort_key: str,
        document: dict[str, Any],
    ) -> None:
        with self._lock:
            self.connection.execute(
                """
                INSERT INTO documents (table_name, partition_key, sort_key, body_json, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(table_name, partition_key, sort_key) DO UPDATE SET
                    body_json = excluded.body_json,
                    updated_at = excluded.updated_at
                """,
                (table, partition_key, sort_key, json.dumps(document), now_utc_iso()),
            )
            self.connection.commit()

    def get_item(
        self,
        table: str,
        partition_key: str,
        sort_key: str = "",
    ) -> dict[str, Any] | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT body_json
                FROM documents
                WHERE table_name = ? AND partition_key = ? AND sort_key = ?
                """,
                (table, partition_key, sort_key),
            ).fetchone()
            if row is None:
                return None
            return json.loads(row["body_json"])

    def query_items(self, table: str, partition_key: str) -> list[dict[str, Any]]:
        with self._lock:
            cursor = self.connection.execute(
                """
                SELECT body_json
                FROM documents
                WHERE table_name = ? AND partition_key = ?
                ORDER BY sort_key
                """,
                (table, partition_key),
            )
            return [json.loads(row["body_json"]) for row in cursor.fetchall()]

    def delete_item(self, table: str, partition_key: str, sort_key: str = "") -> bool:
        with self._lock:
            cursor = self.connection.execute(
                """
                DELETE FROM documents
                WHERE table_name = ? AND partition_key = ? AND sort_key = ?
                """,
                (table, partition_key, sort_key),
            )
            self.connection.commit()
            return cursor.rowcount > 0

    def increment_attribute(
        self,
        table: str,
        partition_key: str,
        attribute: str,
        *,
        sort_key: str = "",
        start: int = 0,
        increment: int = 1,
    ) -> int:
        """Add ``increment`` to a numeric attribute, treating an absent one as ``start``."""
        with self._lock:
            document = self.get_item(table, partition_key, sort_key) or {}
            current = document.get(attribute)
            if not isinstance(current, int | float) or isinstance(current, bool):
                current = start
            updated = int(current) + increment
            document[attribute] = updated
            self.put_item(table, partition_key, sort_key, document)
            return updated

    def issue_credential(
        self,
        *,
        realm: str,
        user_id: str,
        ttl_seconds: int,
    ) -> tuple[str, StoredCredential]:
        with self._lock:
            issued = datetime.now(UTC)
            credential_id = str(uuid.uuid4())
            raw_token = f"jbs_{secrets.token_urlsafe(32)}"
            issued_at = issued.isoformat()
            expires_at = (issued + timedelta(seconds=ttl_seconds)).isoformat()
            self.connection.execute(
                """
                INSERT INTO session_credentials (
                    credential_id,
                    token_hash,
                    realm,
                    user_id,
                    issued_at,
                    expires_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (credential_id, hash_secret(raw_token), realm, user_id, issued_at, expires_at),
            )
            self.connection.commit()
            return raw_token, StoredCredential(
                credential_id=credential_id,
                realm=realm,
                user_id=user_id,
                issued_at=issued_at,
                expires_at=expires_at,
            )

    def resolve_credential(self, raw_token: str) -> StoredCredential | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT
                    credential_id,
                    realm,
                    user_id,
                    issued_at,
                    expires_at,
                    revoked_at,
                    last_used_at
                FROM session_credentials
                WHERE token_hash = ?
                """,
                (hash_secret(raw_token),),
            ).fetchone()
            if row is None or row["revoked_at"] is not None:
                return None
            expires_at = parse_iso_datetime(row["expires_at"])
            if expires_at is None or expires_at <= datetime.now(UTC):
                return None

            now = now_utc_iso()
            self.connection.execute(
                "UPDATE session_credentials SET last_used_at = ? WHERE credential_id = ?",
                (now, row["credential_id"]),
            )
            self.connection.commit()
            credential = StoredCredential(**dict(row))
            return credential.model_copy(update={"last_used_at": now})

    def revoke_credential(self, raw_token: str) -> bool:
        with self._lock:
            cursor = self.connection.execute(
                """
                UPDATE session_credentials
                SET revoked_at = ?
                WHERE token_hash = ? AND revoked_at IS NULL
                """,
                (now_utc_iso(), hash_secret(raw_token)),
            )
            self.connection.commit()
            return cursor.rowcount > 0
