from __future__ import annotations

import hashlib
import hmac
import os
import uuid
from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer


@dataclass(frozen=True)
class Subject:
    """Whoever completion state is scoped to: a logged-in user or one anonymous session."""

    session_id: str
    user_id: Optional[str] = None
    username: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def key(self) -> str:
        return f"user:{self.user_id}" if self.authenticated else f"anon:{self.session_id}"


def anonymous_subject(session_id: Optional[str] = None) -> Subject:
    return Subject(session_id=session_id or str(uuid.uuid4()))


class TokenSigner:
    def __init__(self, secret: str):
        self.serializer = URLSafeSerializer(secret, salt="curriculum-flow")

    def issue(self, subject: Subject) -> str:
        payload = {"session_id": subject.session_id}
        if subject.authenticated:
            payload["user_id"] = subject.user_id
        return self.serializer.dumps(payload)

    def read(self, token: str) -> dict:
        """Raises BadSignature for tampered or foreign tokens."""
        payload = self.serializer.loads(token)
        if not isinstance(payload, dict) or "session_id" not in payload:
            raise BadSignature("Malformed session token")
        return payload


def hash_password(password: str, salt: Optional[bytes] = None) -> str:
    salt = salt or os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 100_000)
    return f"{salt.hex()}${digest.hex()}"


def check_password(password: str, stored: str) -> bool:
    try:
        salt_hex, digest_hex = stored.split("$", 1)
    except ValueError:
        return False
    candidate = hash_password(password, bytes.fromhex(salt_hex)).split("$", 1)[1]
    return hmac.compare_digest(candidate, digest_hex)
