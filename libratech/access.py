import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import jwt

from libratech.config import settings
from libratech.exceptions import Unauthenticated, Unauthorized
from libratech.validators import EmailValidator

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_BORROWER = "borrower"


@dataclass(frozen=True)
class Identity:
    email: str
    role: str = ROLE_BORROWER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class AccessGate:
    """Issues and verifies signed, time-limited session tokens.

    Tokens only carry the borrower's email. The role is resolved here on every
    verification from the configured admin roster, so revoking an admin takes
    effect without waiting for their token to expire.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        expires_minutes: Optional[int] = None,
        admin_emails: Optional[Iterable[str]] = None,
    ) -> None:
        self.secret = secret or settings.access_token_secret
        self.algorithm = algorithm or settings.jwt_algorithm
        self.expires_minutes = expires_minutes or settings.access_token_expires_minutes
        roster = settings.admin_emails if admin_emails is None else admin_emails
        self.admin_emails = {EmailValidator.normalize_email(e) for e in roster}

    @property
    def lifetime(self) -> timedelta:
        return timedelta(minutes=self.expires_minutes)

    def resolve_role(self, email: str) -> str:
        return ROLE_ADMIN if EmailValidator.normalize_email(email) in self.admin_emails else ROLE_BORROWER

    def issue(self, email: str) -> str:
        """Mint a session token for ``email``."""
        if not EmailValidator.is_valid_email(email):
            raise ValueError("A valid email is required.")
        now = datetime.now(timezone.utc)
        claims = {
            "email": EmailValidator.normalize_email(email),
            "iat": now,
            "exp": now + self.lifetime,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def authenticate(self, token: Optional[str]) -> Identity:
        if not token:
            raise Unauthenticated("No session credential.", reason="missing")
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise Unauthenticated("Session expired.") from exc
        except jwt.InvalidTokenError as exc:
            logger.warning("Rejected session token: %s", exc)
            raise Unauthenticated("Invalid session credential.") from exc

        email = claims.get("email")
        if not EmailValidator.is_valid_email(email):
            raise Unauthenticated("Session credential has no identity.")
        email = EmailValidator.normalize_email(email)
        return Identity(email=email, role=self.resolve_role(email))

    def authorize(self, identity: Identity) -> bool:
        return identity.is_admin

    def require_admin(self, identity: Identity) -> Identity:
        if not self.authorize(identity):
            raise Unauthorized(f"{identity.email} is not an administrator.")
        return identity
