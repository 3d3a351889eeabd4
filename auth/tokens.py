from __future__ import annotations

import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

import jwt

from auth.models import join_scopes, parse_scopes
from auth.settings import Settings

logger = logging.getLogger("indieauth.tokens")

JWT_ALGORITHM = "HS256"
CLOCK_SKEW_SECONDS = 60


@dataclass
class AccessTokenValidation:
    is_valid: bool = False
    profile_url: str | None = None
    client_id: str | None = None
    scopes: list[str] = field(default_factory=list)
    expires_at: int | None = None
    error: str | None = None


def generate_refresh_token() -> str:
    return secrets.token_urlsafe(32)


class AccessTokenIssuer:
    """Mints and checks HS256 access tokens bound to the configured issuer and audience."""

    def __init__(self, settings: Settings, *, now: Callable[[], float] = time.time) -> None:
        self.settings = settings
        self._now = now

    def issue(self, profile_url: str, client_id: str, scopes: list[str]) -> str:
        issued_at = int(self._now())
        payload = {
            "me": profile_url,
            "client_id": client_id,
            "scope": join_scopes(scopes),
            "iat": issued_at,
            "jti": uuid.uuid4().hex,
            "exp": issued_at + self.settings.access_token_seconds,
            "iss": self.settings.token_issuer,
            "aud": self.settings.token_audience,
        }
        return jwt.encode(payload, self.settings.jwt_secret, algorithm=JWT_ALGORITHM)

    def validate(self, token: str) -> AccessTokenValidation:
        try:
            claims = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[JWT_ALGORITHM],
                issuer=self.settings.token_issuer,
                audience=self.settings.token_audience,
                options={
                    "require": ["me", "client_id", "exp", "iss", "aud"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
            # Expiry is checked against the same clock that stamps iat and exp.
            expires_at = claims["exp"]
            if not isinstance(expires_at, int) or isinstance(expires_at, bool):
                raise jwt.DecodeError("Expiration Time claim (exp) must be an integer.")
            if expires_at <= self._now() - CLOCK_SKEW_SECONDS:
                raise jwt.ExpiredSignatureError("Signature has expired")
        except jwt.ExpiredSignatureError:
            return AccessTokenValidation(error="expired")
        except jwt.InvalidTokenError as error:
            logger.warning("Access token validation failed: %s", error)
            return AccessTokenValidation(error="invalid")
        except Exception:
            logger.exception("Unexpected error during access token validation")
            return AccessTokenValidation(error="unexpected")

        return AccessTokenValidation(
            is_valid=True,
            profile_url=claims.get("me"),
            client_id=claims.get("client_id"),
            scopes=parse_scopes(claims.get("scope")),
            expires_at=claims.get("exp"),
        )
