from __future__ import annotations

import json
import logging
import secrets
from datetime import UTC, datetime
from typing import Literal

from common.utils import hash_secret, parse_iso_datetime
from pydantic import BaseModel, EmailStr, Field

from jobboard.errors import AuthorizationError
from jobboard.repository import JobBoardRepository

REALM_SEEKER = "seeker"
REALM_EMPLOYER = "employer"
REALMS = (REALM_SEEKER, REALM_EMPLOYER)
DEFAULT_CREDENTIAL_TTL_SECONDS = 3600
SIGN_IN_REQUIRED = "Please sign in to continue"
LOGGER = logging.getLogger("jobboard.session")

Realm = Literal["seeker", "employer"]
AuthStatus = Literal["configuring", "unauthenticated", "authenticated"]

# Sign-up attributes collected by each realm's hosted sign-up form.
REALM_SIGNUP_ATTRIBUTES: dict[str, list[str]] = {
    REALM_SEEKER: ["email"],
    REALM_EMPLOYER: ["email", "address", "nickname"],
}


class RealmUser(BaseModel):
    username: str = Field(..., min_length=1, max_length=128)
    password_sha256: str = Field(..., min_length=64, max_length=64)
    name: str = ""
    email: EmailStr | None = None
    attributes: dict[str, str] = Field(default_factory=dict)


class RealmConfig(BaseModel):
    realm: Realm
    signup_attributes: list[str] = Field(default_factory=list)
    users: dict[str, RealmUser] = Field(default_factory=dict)


class SessionUser(BaseModel):
    user_id: str
    username: str
    name: str = ""
    email: EmailStr | None = None
    attributes: dict[str, str] = Field(default_factory=dict)


class SessionCredentials(BaseModel):
    token: str = Field(..., repr=False)
    credential_id: str
    expires_at: str

    def is_live(self) -> bool:
        expires = parse_iso_datetime(self.expires_at)
        return expires is not None and expires > datetime.now(UTC)


class Session(BaseModel):
    status: AuthStatus
    realm: Realm | None = None
    user: SessionUser | None = None
    credentials: SessionCredentials | None = None
    signed_in_at: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.status == "authenticated" and self.user is not None


def parse_realm_users(raw: str) -> dict[str, RealmUser]:
    """Parse a ``{"username": {"password_sha256": ..., ...}}`` user directory."""
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("Realm user directory must be a JSON object.")

    users: dict[str, RealmUser] = {}
    for username, entry in parsed.items():
        if not isinstance(username, str) or not username.strip():
            raise ValueError("Usernames must be non-empty strings.")
        if not isinstance(entry, dict):
            raise ValueError(f"User entry for {username!r} must be an object.")
        users[username.strip()] = RealmUser(**{**entry, "username": username.strip()})
    return users


def build_user_id(realm: str, username: str) -> str:
    return f"{realm}:{username}"


class SessionProvider:
    """Issues and resolves sessions for exactly one realm per signed-in client.

    Until ``configure`` runs every session reports ``configuring``.
    """

    def __init__(
        self,
        repository: JobBoardRepository,
        *,
        credential_ttl_seconds: int = DEFAULT_CREDENTIAL_TTL_SECONDS,
    ) -> None:
        self.repository = repository
        self.credential_ttl_seconds = credential_ttl_seconds
        self._realms: dict[str, RealmConfig] | None = None

    @property
    def configured(self) -> bool:
        return self._realms is not None

    def configure(self, realms: dict[str, RealmConfig]) -> None:
        unknown = set(realms) - set(REALMS)
        if unknown:
            raise ValueError(f"Unknown realms: {', '.join(sorted(unknown))}")
        self._realms = dict(realms)

    def realm_config(self, realm: str) -> RealmConfig:
        if self._realms is None:
            raise RuntimeError("Session provider is not configured")
        config = self._realms.get(realm)
        if config is None:
            raise KeyError(f"Unknown realm: {realm}")
        return config

    def get_session(self, token: str | None) -> Session:
        if self._realms is None:
            return Session(status="configuring")
        if not token:
            return Session(status="unauthenticated")

        stored = self.repository.resolve_credential(token)
        if stored is None or stored.realm not in self._realms:
            return Session(status="unauthenticated")

        username = stored.user_id.split(":", 1)[-1]
        realm_user = self._realms[stored.realm].users.get(username)
        if realm_user is None:
            return Session(status="unauthenticated")

        return Session(
            status="authenticated",
            realm=stored.realm,
            user=self._to_session_user(stored.realm, realm_user),
            credentials=SessionCredentials(
                token=token,
                credential_id=stored.credential_id,
                expires_at=stored.expires_at,
            ),
            signed_in_at=stored.issued_at,
        )

    def sign_in(
        self,
        realm: str,
        username: str,
        password: str,
        *,
        current_token: str | None = None,
    ) -> Session:
        config = self.realm_config(realm)

        if current_token:
            previous = self.repository.resolve_credential(current_token)
            self.repository.revoke_credential(current_token)
            if previous is not None and previous.realm != realm:
                LOGGER.info(
                    json.dumps(
                        {
                            "event": "realm_switch",
                            "from_realm": previous.realm,
                            "to_realm": realm,
                        }
                    )
                )

        realm_user = config.users.get(username)
        if realm_user is None or not secrets.compare_digest(
            hash_secret(password),
            realm_user.password_sha256,
        ):
            LOGGER.warning(json.dumps({"event": "sign_in_rejected", "realm": realm}))
            raise AuthorizationError("Incorrect username or password")

        token, stored = self.repository.issue_credential(
            realm=realm,
            user_id=build_user_id(realm, username),
            ttl_seconds=self.credential_ttl_seconds,
        )
        LOGGER.info(json.dumps({"event": "sign_in", "realm": realm, "user_id": stored.user_id}))
        return Session(
            status="authenticated",
            realm=realm,
            user=self._to_session_user(realm, realm_user),
            credentials=SessionCredentials(
                token=token,
                credential_id=stored.credential_id,
                expires_at=stored.expires_at,
            ),
            signed_in_at=stored.issued_at,
        )

    def sign_out(self, token: str | None) -> bool:
        if not token:
            return False
        return self.repository.revoke_credential(token)

    @staticmethod
    def _to_session_user(realm: str, realm_user: RealmUser) -> SessionUser:
        return SessionUser(
            user_id=build_user_id(realm, realm_user.username),
            username=realm_user.username,
            name=realm_user.name,
            email=realm_user.email,
            attributes=dict(realm_user.attributes),
        )


def require_authenticated(session: Session, message: str = SIGN_IN_REQUIRED) -> SessionUser:
    if not session.authenticated or session.user is None:
        raise AuthorizationError(message)
    if session.credentials is None or not session.credentials.is_live():
        raise AuthorizationError(message)
    return session.user
