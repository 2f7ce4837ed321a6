"""
Token issuing and verification.

User access and refresh tokens and admin tokens are HS256 JWTs. One-time
tokens (email verification, password reset) are random URL-safe strings.
Only SHA-256 hashes of any token are persisted.
"""

import hashlib
import secrets
from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt
from structlog import get_logger

from studyabroad.config import Settings
from studyabroad.exceptions import InvalidTokenError
from studyabroad.models.domain import AccessClaims, AdminIdentity, TokenPair

logger = get_logger(__name__)

ALGORITHM = "HS256"

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"
TOKEN_TYPE_ADMIN = "admin"


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a token (never store raw tokens)."""
    return hashlib.sha256(token.encode()).hexdigest()


def generate_one_time_token() -> str:
    return secrets.token_urlsafe(32)


class TokenService:
    """Issues and verifies the JWTs used by users and admins."""

    def __init__(self, settings: Settings) -> None:
        self.access_secret = settings.jwt_secret
        self.refresh_secret = settings.refresh_secret
        self.access_ttl = timedelta(days=settings.access_token_expire_days)
        self.refresh_ttl = timedelta(days=settings.refresh_token_expire_days)
        self.admin_ttl = timedelta(days=settings.admin_token_expire_days)

    def _encode(self, claims: dict[str, object], secret: str, ttl: timedelta) -> str:
        now = datetime.now(UTC)
        payload = {
            **claims,
            "jti": secrets.token_hex(16),
            "iat": now,
            "exp": now + ttl,
        }
        return jwt.encode(payload, secret, algorithm=ALGORITHM)

    def _decode(self, token: str, secret: str, expected_type: str) -> dict[str, object]:
        try:
            payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError:
            logger.info("jwt_expired", token_type=expected_type)
            raise InvalidTokenError("Token has expired")
        except jwt.InvalidTokenError as exc:
            logger.warning("jwt_invalid", token_type=expected_type, error=str(exc))
            raise InvalidTokenError("Invalid token")

        if payload.get("type") != expected_type:
            logger.warning("jwt_wrong_type", expected=expected_type, got=payload.get("type"))
            raise InvalidTokenError("Invalid token")
        return payload

    # ------------------------------------------------------------------
    # User tokens
    # ------------------------------------------------------------------

    def issue_user_tokens(self, user_id: UUID, email: str, role: str) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(user_id, email, role),
            refresh_token=self.issue_refresh_token(user_id),
        )

    def issue_access_token(self, user_id: UUID, email: str, role: str) -> str:
        return self._encode(
            {"sub": str(user_id), "email": email, "role": role, "type": TOKEN_TYPE_ACCESS},
            self.access_secret,
            self.access_ttl,
        )

    def issue_refresh_token(self, user_id: UUID) -> str:
        return self._encode(
            {"sub": str(user_id), "type": TOKEN_TYPE_REFRESH},
            self.refresh_secret,
            self.refresh_ttl,
        )

    def verify_access_token(self, token: str) -> AccessClaims:
        """Verify signature, expiry and type of a user access token."""
        payload = self._decode(token, self.access_secret, TOKEN_TYPE_ACCESS)
        try:
            return AccessClaims(
                user_id=UUID(str(payload["sub"])),
                email=str(payload["email"]),
                role=str(payload["role"]),
                token_id=str(payload["jti"]),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), UTC),  # type: ignore[call-overload]
            )
        except (KeyError, ValueError) as exc:
            raise InvalidTokenError("Invalid token") from exc

    def verify_refresh_token(self, token: str) -> UUID:
        """Verify a refresh token and return the user id it was issued to."""
        payload = self._decode(token, self.refresh_secret, TOKEN_TYPE_REFRESH)
        try:
            return UUID(str(payload["sub"]))
        except (KeyError, ValueError) as exc:
            raise InvalidTokenError("Invalid token") from exc

    # ------------------------------------------------------------------
    # Admin tokens
    # ------------------------------------------------------------------

    def issue_admin_token(self, email: str) -> str:
        return self._encode(
            {"sub": email, "email": email, "role": "admin", "type": TOKEN_TYPE_ADMIN},
            self.access_secret,
            self.admin_ttl,
        )

    def verify_admin_token(self, token: str) -> AdminIdentity:
        payload = self._decode(token, self.access_secret, TOKEN_TYPE_ADMIN)
        if payload.get("role") != "admin" or not payload.get("email"):
            raise InvalidTokenError("Invalid admin token")
        return AdminIdentity(email=str(payload["email"]))

    def peek_user_id(self, token: str) -> UUID | None:
        """
        Signature-checked user id from an access token, ignoring expiry.

        Used by logout so an expired token can still end its sessions.
        """
        try:
            payload = jwt.decode(
                token, self.access_secret, algorithms=[ALGORITHM], options={"verify_exp": False}
            )
            if payload.get("type") != TOKEN_TYPE_ACCESS:
                return None
            return UUID(str(payload["sub"]))
        except (jwt.InvalidTokenError, KeyError, ValueError):
            return None
