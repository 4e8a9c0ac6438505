"""Local identity provider: accounts, bearer tokens and per-user metadata.

Accounts and sessions are kept in the key-value store next to the lesson
data. Only the operations the lesson service needs are offered; there is no
password reset, email confirmation or token refresh.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional
from uuid import uuid4

from kv_store import KeyValueStore
from schemas import ROLES

logger = logging.getLogger(__name__)

_PBKDF2_ITERATIONS = 150_000
_PBKDF2_DIGEST = "sha256"

DEFAULT_TOKEN_TTL_SECONDS = 3600


class IdentityError(Exception):
    """Base class for identity failures surfaced to callers."""


class DuplicateIdentity(IdentityError):
    pass


class InvalidCredentials(IdentityError):
    pass


@dataclass
class Identity:
    id: str
    email: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None

    @property
    def name(self) -> str:
        return self.metadata.get("name") or "Anonymous"

    @property
    def role(self) -> str:
        return self.metadata.get("role") or "student"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "user_metadata": dict(self.metadata),
            "created_at": self.created_at,
        }


# ---------- Helpers ----------
def _generate_salt() -> str:
    return secrets.token_bytes(16).hex()


def _pbkdf2_hash(password: str, salt_hex: str) -> str:
    try:
        salt_bytes = bytes.fromhex(salt_hex)
    except ValueError:
        raise ValueError("Invalid salt for password hashing") from None
    return hashlib.pbkdf2_hmac(
        _PBKDF2_DIGEST,
        password.encode("utf-8"),
        salt_bytes,
        _PBKDF2_ITERATIONS,
    ).hex()


def hash_password(password: str) -> tuple[str, str]:
    salt_hex = _generate_salt()
    return _pbkdf2_hash(password, salt_hex), salt_hex


def verify_password(password: str, stored_hash: str, stored_salt: str) -> bool:
    try:
        derived = _pbkdf2_hash(password, stored_salt)
    except ValueError:
        return False
    return hmac.compare_digest(stored_hash or "", derived)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _check_role(role: str) -> str:
    if role not in ROLES:
        raise ValueError(f"role must be one of {', '.join(ROLES)}")
    return role


class IdentityProvider:
    """Issues and validates bearer tokens and stores user metadata."""

    def __init__(self, store: KeyValueStore, token_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS):
        self.store = store
        self.token_ttl = timedelta(seconds=token_ttl_seconds)

    @staticmethod
    def _user_key(user_id: str) -> str:
        return f"auth_user:{user_id}"

    @staticmethod
    def _email_key(email: str) -> str:
        return f"auth_email:{email.strip().lower()}"

    @staticmethod
    def _session_key(token: str) -> str:
        return f"auth_session:{token}"

    @staticmethod
    def _to_identity(record: Mapping[str, Any]) -> Identity:
        return Identity(
            id=record["id"],
            email=record.get("email") or "",
            metadata=dict(record.get("metadata") or {}),
            created_at=record.get("createdAt"),
        )

    def create_user(self, email: str, password: str, name: str = "", role: str = "student") -> Identity:
        _check_role(role)
        email = email.strip()
        if self.store.get(self._email_key(email)):
            raise DuplicateIdentity("A user with this email address has already been registered")
        pw_hash, pw_salt = hash_password(password)
        user_id = str(uuid4())
        record = {
            "id": user_id,
            "email": email,
            "pwHash": pw_hash,
            "pwSalt": pw_salt,
            "metadata": {"name": name, "role": role},
            "createdAt": _now().isoformat(),
        }
        self.store.set(self._user_key(user_id), record)
        self.store.set(self._email_key(email), user_id)
        logger.info("Created %s account %s", role, user_id)
        return self._to_identity(record)

    def sign_in(self, email: str, password: str) -> dict[str, Any]:
        user_id = self.store.get(self._email_key(email))
        record = self.store.get(self._user_key(user_id)) if user_id else None
        if not record or not verify_password(password, record.get("pwHash", ""), record.get("pwSalt", "")):
            raise InvalidCredentials("Invalid login credentials")
        token = secrets.token_urlsafe(32)
        expires_at = _now() + self.token_ttl
        self.store.set(self._session_key(token), {"userId": record["id"], "expiresAt": expires_at.isoformat()})
        return {
            "accessToken": token,
            "tokenType": "bearer",
            "expiresAt": expires_at.isoformat(),
            "user": self._to_identity(record).to_dict(),
        }

    def authenticate(self, token: Optional[str]) -> Optional[Identity]:
        """Resolve ``token`` to its user; None when missing, unknown or expired."""
        if not token:
            return None
        session = self.store.get(self._session_key(token))
        if not session:
            return None
        try:
            expires_at = datetime.fromisoformat(session["expiresAt"])
        except (KeyError, TypeError, ValueError):
            return None
        if expires_at <= _now():
            self.store.delete(self._session_key(token))
            return None
        return self.get_user(session.get("userId", ""))

    def sign_out(self, token: str) -> None:
        self.store.delete(self._session_key(token))

    def get_user(self, user_id: str) -> Optional[Identity]:
        record = self.store.get(self._user_key(user_id)) if user_id else None
        if not record:
            return None
        return self._to_identity(record)

    def update_metadata(self, user_id: str, patch: Mapping[str, Any]) -> Optional[Identity]:
        """Shallow-merge ``patch`` into the user's metadata."""
        if "role" in patch:
            _check_role(patch["role"])
        key = self._user_key(user_id)
        record = self.store.get(key)
        if not record:
            return None
        metadata = dict(record.get("metadata") or {})
        metadata.update(patch)
        record["metadata"] = metadata
        self.store.set(key, record)
        return self._to_identity(record)
