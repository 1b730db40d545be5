"""
session_store.py — In-memory accounts and session tokens.

Stands in for the external user/session store. It only decides whether
a caller has a loaded Profile; it is not an identity system.

    register(email, password, ...) → Profile
    login(email, password)         → (token, Profile)
    resolve(token)                 → Profile | None
    logout(token)                  → bool

With SESSION_AUTO_PROVISION enabled, logging in with an unknown e-mail
creates a profile named after the address's local part.
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from passlib.context import CryptContext

from backend.app.core.config import settings
from backend.app.core.errors import (
    NotAuthenticatedError,
    SafetyAPIError,
    ValidationError,
)
from backend.app.profiles.profile import Profile

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
PROFILE_FIELDS = frozenset({"name", "phone_number", "wallet_address"})


def _normalise_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email:
        raise ValidationError("A valid e-mail address is required", field="email")
    return email


@dataclass
class _Account:
    profile: Profile
    password_hash: str

    def check(self, password: str) -> bool:
        return pwd_context.verify(password, self.password_hash)


class AccountExistsError(SafetyAPIError):
    def __init__(self, email: str):
        super().__init__(
            message=f"An account for '{email}' already exists",
            status_code=409,
            error_code="ACCOUNT_EXISTS",
            details={"email": email},
        )


class SessionStore:
    """Accounts keyed by e-mail, sessions keyed by bearer token."""

    def __init__(self, *, auto_provision: Optional[bool] = None):
        self._lock = threading.RLock()
        self._accounts: Dict[str, _Account] = {}
        self._sessions: Dict[str, str] = {}  # token → e-mail
        self.auto_provision = (
            settings.SESSION_AUTO_PROVISION if auto_provision is None else auto_provision
        )

    @property
    def account_count(self) -> int:
        return len(self._accounts)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def register(
        self,
        email: str,
        password: str,
        *,
        name: Optional[str] = None,
        phone_number: str = "",
        wallet_address: Optional[str] = None,
    ) -> Profile:
        email = _normalise_email(email)
        if not password:
            raise ValidationError("Password is required", field="password")
        with self._lock:
            if email in self._accounts:
                raise AccountExistsError(email)
            profile = Profile(
                name=(name or "").strip() or email.split("@")[0],
                email=email,
                phone_number=phone_number,
                wallet_address=wallet_address or None,
            )
            self._accounts[email] = _Account(profile, pwd_context.hash(password))
        logger.info(
            "Registered profile %s", profile.profile_id,
            extra={"profile_id": profile.profile_id},
        )
        return profile

    def login(self, email: str, password: str) -> Tuple[str, Profile]:
        email = _normalise_email(email)
        with self._lock:
            account = self._accounts.get(email)
            if account is None:
                if not self.auto_provision:
                    raise NotAuthenticatedError("Invalid e-mail or password")
                self.register(email, password)
                account = self._accounts[email]
            elif not account.check(password):
                raise NotAuthenticatedError("Invalid e-mail or password")

            token = secrets.token_urlsafe(32)
            self._sessions[token] = email
        logger.info(
            "Session opened for %s", account.profile.profile_id,
            extra={"profile_id": account.profile.profile_id},
        )
        return token, account.profile

    def logout(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def resolve(self, token: Optional[str]) -> Optional[Profile]:
        if not token:
            return None
        with self._lock:
            email = self._sessions.get(token)
            if email is None:
                return None
            return self._accounts[email].profile

    def update_profile(self, profile: Profile, **fields: Any) -> Profile:
        unknown = set(fields) - PROFILE_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot update profile field(s): {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        if "name" in fields and not (fields["name"] or "").strip():
            raise ValidationError("Name cannot be empty", field="name")
        if "phone_number" in fields:
            fields["phone_number"] = (fields["phone_number"] or "").strip()
        if "wallet_address" in fields:
            fields["wallet_address"] = (fields["wallet_address"] or "").strip() or None
        with self._lock:
            for key, value in fields.items():
                setattr(profile, key, value.strip() if isinstance(value, str) else value)
        return profile
