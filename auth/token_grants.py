from __future__ import annotations

import hmac
import logging
import time
from typing import Callable, Mapping

from auth.audit import audit, redact
from auth.authorization import AuthorizationService
from auth.errors import OAuthError, invalid_grant, invalid_request
from auth.models import RefreshToken, join_scopes
from auth.settings import Settings
from auth.token_store import AuthStore
from auth.tokens import AccessTokenIssuer, generate_refresh_token

logger = logging.getLogger("indieauth.tokens")

SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token")


class TokenGrantService:
    """Token endpoint grants plus introspection and revocation."""

    def __init__(
        self,
        settings: Settings,
        store: AuthStore,
        authorization: AuthorizationService,
        issuer: AccessTokenIssuer,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.store = store
        self.authorization = authorization
        self.issuer = issuer
        self._clock = clock

    async def exchange(self, form: Mapping[str, str]) -> dict:
        grant_type = form.get("grant_type")
        if grant_type == "authorization_code":
            return await self.exchange_code(form)
        if grant_type == "refresh_token":
            return await self.refresh(form)
        raise OAuthError(
            "unsupported_grant_type",
            "Only authorization_code and refresh_token grant types are supported",
        )

    async def exchange_code(self, form: Mapping[str, str]) -> dict:
        for name, description in (
            ("code", "code is required"),
            ("client_id", "client_id is required"),
            ("redirect_uri", "redirect_uri is required"),
            ("code_verifier", "code_verifier is required (PKCE)"),
        ):
            if not form.get(name):
                raise invalid_request(description)

        record = await self.authorization.validate_authorization_code(
            form["code"],
            form["client_id"],
            form["redirect_uri"],
            form["code_verifier"],
            require_scope=True,
        )

        refresh_token = self._new_refresh_token(record.profile_url, record.client_id, record.scopes)
        await self.store.save_refresh_token(refresh_token)

        access_token = self.issuer.issue(record.profile_url, record.client_id, record.scopes)
        audit(
            "token_issued",
            client_id=record.client_id,
            profile_url=record.profile_url,
            scope=join_scopes(record.scopes),
            expires_in=self.settings.access_token_seconds,
        )
        return self._token_response(access_token, refresh_token)

    async def refresh(self, form: Mapping[str, str]) -> dict:
        presented = form.get("refresh_token")
        client_id = form.get("client_id")
        if not presented:
            raise invalid_request("refresh_token is required")
        if not client_id:
            raise invalid_request("client_id is required")

        stored = await self.store.get_refresh_token(presented)
        if stored is None:
            raise invalid_grant("Invalid or expired refresh token")
        if stored.client_id != client_id:
            logger.warning("Refresh token presented by a different client: %s", client_id)
            raise invalid_grant("client_id mismatch")

        rotated = self._new_refresh_token(stored.profile_url, stored.client_id, stored.scopes)
        if not await self.store.rotate_refresh_token(presented, rotated):
            raise invalid_grant("Invalid or expired refresh token")

        access_token = self.issuer.issue(stored.profile_url, stored.client_id, stored.scopes)
        audit(
            "token_refreshed",
            client_id=stored.client_id,
            profile_url=stored.profile_url,
            previous=redact(presented),
        )
        return self._token_response(access_token, rotated)

    def is_introspection_authorized(self, bearer: str | None) -> bool:
        secret = self.settings.introspection_secret
        if not secret or not bearer:
            return False
        return hmac.compare_digest(bearer.encode("utf-8"), secret.encode("utf-8"))

    async def introspect(self, token: str | None, bearer: str | None) -> dict:
        if not self.is_introspection_authorized(bearer):
            audit("introspection_rejected")
            raise OAuthError("unauthorized", "Bearer token required", 401)

        if not token:
            return {"active": False}

        result = self.issuer.validate(token)
        if not result.is_valid:
            return {"active": False}

        return {
            "active": True,
            "me": result.profile_url,
            "client_id": result.client_id,
            "scope": join_scopes(result.scopes),
            "exp": result.expires_at,
        }

    async def revoke(self, token: str | None) -> None:
        if not token:
            return
        if await self.store.revoke_refresh_token(token):
            audit("token_revoked", token=redact(token))

    def _new_refresh_token(self, profile_url: str, client_id: str, scopes: list[str]) -> RefreshToken:
        now = self._clock()
        return RefreshToken(
            token=generate_refresh_token(),
            profile_url=profile_url,
            client_id=client_id,
            scopes=list(scopes),
            created_at=now,
            expires_at=now + self.settings.refresh_token_days * 86400,
        )

    def _token_response(self, access_token: str, refresh_token: RefreshToken) -> dict:
        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": self.settings.access_token_seconds,
            "refresh_token": refresh_token.token,
            "scope": join_scopes(refresh_token.scopes),
            "me": refresh_token.profile_url,
        }
