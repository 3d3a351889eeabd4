"""IndieAuth authorization flow: request validation, pending sessions and code issuance.

A pending session moves ``created -> provider_selected -> authenticated ->
consent_given`` and is deleted when its authorization code is minted. Each
transition is a compare-and-set on the stored status, so a replayed or
concurrent step sees the session as gone.
"""

from __future__ import annotations

import logging
import secrets
import time
import urllib.parse
from dataclasses import dataclass, replace
from typing import Callable, Mapping

from auth.audit import audit, redact
from auth.client_discovery import ClientDiscoveryService
from auth.errors import (
    AuthorizationRequestError,
    OAuthError,
    SessionNotFoundError,
    invalid_grant,
    invalid_request,
)
from auth.models import AuthorizationCode, ClientInfo, PendingSession, SessionStatus, parse_scopes
from auth.pkce import SUPPORTED_METHOD, validate_code_verifier
from auth.profile_discovery import ProfileDiscoveryService
from auth.providers.base import IdentityProviderRegistry
from auth.settings import Settings
from auth.token_store import AuthStore
from auth.urls import (
    append_query_params,
    is_cross_origin_candidate,
    is_redirect_uri_in_published_list,
    is_valid_client_id,
    is_valid_profile_url,
    is_valid_redirect_uri,
    profile_host,
)

logger = logging.getLogger("indieauth.authorization")

AUTHORIZATION_PARAMS = (
    "response_type",
    "client_id",
    "redirect_uri",
    "state",
    "code_challenge",
    "code_challenge_method",
    "scope",
    "me",
)
INVALID_CODE_DESCRIPTION = "Invalid, expired, or already used authorization code"


@dataclass(frozen=True)
class AuthorizationRequest:
    response_type: str | None = None
    client_id: str | None = None
    redirect_uri: str | None = None
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    scope: str | None = None
    me: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "AuthorizationRequest":
        return cls(**{name: params.get(name) for name in AUTHORIZATION_PARAMS})

    def to_params(self) -> dict[str, str]:
        return {
            name: getattr(self, name)
            for name in AUTHORIZATION_PARAMS
            if getattr(self, name)
        }


def _untrusted(description: str) -> AuthorizationRequestError:
    return AuthorizationRequestError("invalid_request", description, redirect_untrusted=True)


def generate_token() -> str:
    return secrets.token_urlsafe(32)


class AuthorizationService:
    def __init__(
        self,
        settings: Settings,
        store: AuthStore,
        profile_discovery: ProfileDiscoveryService,
        client_discovery: ClientDiscoveryService,
        providers: IdentityProviderRegistry,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.store = store
        self.profile_discovery = profile_discovery
        self.client_discovery = client_discovery
        self.providers = providers
        self._clock = clock

    # -- authorization request -------------------------------------------------

    async def begin_authorization(self, request: AuthorizationRequest) -> str:
        """Validate an authorization request and return where to send the user next.

        Raises ``AuthorizationRequestError``; ``redirect_untrusted`` is set on
        every failure that happens before the redirect_uri has been verified.
        """
        if request.response_type != "code":
            raise AuthorizationRequestError(
                "unsupported_response_type",
                "Only 'code' response type is supported",
                redirect_untrusted=True,
            )
        if not request.client_id:
            raise _untrusted("client_id is required")
        if not is_valid_client_id(request.client_id):
            raise _untrusted("client_id is not a valid IndieAuth client identifier")
        if not request.redirect_uri:
            raise _untrusted("redirect_uri is required")

        client_info = await self._verify_redirect_uri(request.client_id, request.redirect_uri)

        if not request.state:
            raise AuthorizationRequestError("invalid_request", "state is required")
        if not request.code_challenge:
            raise AuthorizationRequestError("invalid_request", "code_challenge is required (PKCE)")
        if request.code_challenge_method != SUPPORTED_METHOD:
            raise AuthorizationRequestError(
                "invalid_request", "code_challenge_method must be S256"
            )

        if not request.me:
            if client_info is None:
                client_info = await self.client_discovery.discover(request.client_id)
            return self._profile_entry_url(request, client_info)

        if not is_valid_profile_url(request.me):
            raise AuthorizationRequestError(
                "invalid_request",
                "me is not a valid IndieAuth profile URL",
            )
        if not self.is_profile_host_allowed(request.me):
            audit("authorize_denied", reason="host_not_allowed", client_id=request.client_id)
            raise AuthorizationRequestError(
                "access_denied",
                "This server is not configured to authenticate users from the requested website.",
            )

        if client_info is None:
            client_info = await self.client_discovery.discover(request.client_id)

        discovery = await self.profile_discovery.discover(request.me)
        if not discovery.success:
            raise AuthorizationRequestError(
                "invalid_request", discovery.error or "Failed to discover profile"
            )
        if not discovery.providers:
            raise AuthorizationRequestError(
                "invalid_request", "No supported identity providers found on your website"
            )

        now = self._clock()
        session = PendingSession(
            session_id=generate_token(),
            client_id=request.client_id,
            redirect_uri=request.redirect_uri,
            state=request.state,
            code_challenge=request.code_challenge,
            code_challenge_method=request.code_challenge_method,
            scopes=parse_scopes(request.scope),
            profile_url=discovery.profile_url,
            providers=list(discovery.providers),
            created_at=now,
            expires_at=now + self.settings.pending_session_minutes * 60,
            client_name=client_info.client_name,
            client_logo_uri=client_info.logo_uri,
        )

        adapter = None
        if len(session.providers) == 1:
            adapter = self.providers.by_type(session.providers[0].type)

        if adapter is None:
            await self.store.save_session(session)
            logger.info("Authorization session created for %s", session.profile_url)
            return self.select_provider_url(session.session_id)

        session = replace(
            session,
            status=SessionStatus.PROVIDER_SELECTED,
            selected_provider_type=adapter.provider_type,
            provider_state=generate_token(),
        )
        await self.store.save_session(session)
        logger.info(
            "Authorization session for %s sent straight to %s",
            session.profile_url,
            adapter.provider_type,
        )
        return adapter.get_authorization_url(
            session.provider_state, self.settings.callback_url(adapter.provider_type)
        )

    async def _verify_redirect_uri(self, client_id: str, redirect_uri: str) -> ClientInfo | None:
        if is_valid_redirect_uri(redirect_uri, client_id):
            return None

        if not is_cross_origin_candidate(redirect_uri):
            raise _untrusted("redirect_uri is not valid or does not match client_id")

        client_info = await self.client_discovery.discover(client_id)
        if (
            not client_info.was_fetched
            or not client_info.redirect_uris
            or not is_redirect_uri_in_published_list(redirect_uri, client_info.redirect_uris)
        ):
            logger.warning(
                "Cross-origin redirect_uri %s is not published by %s", redirect_uri, client_id
            )
            raise _untrusted("redirect_uri is not valid or does not match client_id")
        return client_info

    def _profile_entry_url(self, request: AuthorizationRequest, client_info: ClientInfo) -> str:
        params = request.to_params()
        if client_info.client_name:
            params["client_name"] = client_info.client_name
        if client_info.logo_uri:
            params["client_logo"] = client_info.logo_uri
        return "/enter-profile?" + urllib.parse.urlencode(params, quote_via=urllib.parse.quote)

    def is_profile_host_allowed(self, profile_url: str) -> bool:
        allowed = self.settings.allowed_profile_hosts
        if not allowed:
            return True
        host = profile_host(profile_url)
        if not host:
            return False
        return any(host.lower() == candidate.lower() for candidate in allowed)

    @staticmethod
    def select_provider_url(session_id: str) -> str:
        return "/select-provider?" + urllib.parse.urlencode({"session_id": session_id})

    @staticmethod
    def consent_url(session_id: str) -> str:
        return "/consent?" + urllib.parse.urlencode({"session_id": session_id})

    # -- pending sessions --------------------------------------------------------

    async def get_session(self, session_id: str | None) -> PendingSession:
        if not session_id:
            raise SessionNotFoundError()
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError()
        return session

    async def select_provider(self, session_id: str | None, provider_type: str | None) -> str:
        session = await self.get_session(session_id)
        if session.is_authenticated:
            raise invalid_request("Session is already authenticated")

        wanted = (provider_type or "").lower()
        discovered = next(
            (provider for provider in session.providers if provider.type.lower() == wanted),
            None,
        )
        if discovered is None:
            raise invalid_request("Invalid provider")

        adapter = self.providers.by_type(discovered.type)
        if adapter is None:
            raise OAuthError("server_error", "Provider not available", 500)

        updated = replace(
            session,
            status=SessionStatus.PROVIDER_SELECTED,
            selected_provider_type=discovered.type,
            provider_state=generate_token(),
        )
        if not await self.store.update_session(updated, session.status):
            raise SessionNotFoundError()

        return adapter.get_authorization_url(
            updated.provider_state, self.settings.callback_url(adapter.provider_type)
        )

    async def complete_callback(
        self,
        provider_type: str,
        *,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> str:
        """Finish the external provider round-trip and return the consent location."""
        if error:
            logger.warning("%s OAuth error: %s - %s", provider_type, error, error_description)
            raise OAuthError(error, error_description or "")
        if not code or not state:
            raise invalid_request("Missing code or state")

        session = await self.store.find_session_by_provider_state(state)
        if session is None or session.status is not SessionStatus.PROVIDER_SELECTED:
            logger.warning("No pending authentication found for provider state %s", redact(state))
            raise SessionNotFoundError("Session expired or invalid")

        selected = session.selected_provider()
        if selected is None or selected.type.lower() != provider_type.lower():
            raise OAuthError(
                "invalid_provider", f"{provider_type} is not the selected provider for this session"
            )

        adapter = self.providers.by_type(selected.type)
        if adapter is None:
            logger.error("Identity provider %s is not registered", selected.type)
            raise OAuthError("server_error", "Provider not available", 500)

        result = await adapter.exchange_code(code, self.settings.callback_url(adapter.provider_type))
        await adapter.verify_profile(result.access_token, selected.profile_url)

        authenticated = replace(session, status=SessionStatus.AUTHENTICATED, provider_state=None)
        if not await self.store.update_session(authenticated, SessionStatus.PROVIDER_SELECTED):
            raise SessionNotFoundError("Session expired or invalid")

        audit(
            "provider_authenticated",
            provider=selected.type,
            profile_url=session.profile_url,
            client_id=session.client_id,
        )
        return self.consent_url(session.session_id)

    async def get_consent_info(self, session_id: str | None) -> dict:
        session = await self.get_session(session_id)
        if not session.is_authenticated:
            raise invalid_request("Not authenticated yet")

        return {
            "client": {
                "client_id": session.client_id,
                "name": session.client_name or urllib.parse.urlsplit(session.client_id).hostname,
                "url": session.client_id,
                "logo_url": session.client_logo_uri,
            },
            "scopes": list(session.scopes),
            "profile_url": session.profile_url,
        }

    async def submit_consent(self, session_id: str | None, approved: bool) -> str:
        session = await self.get_session(session_id)
        if not session.is_authenticated:
            raise invalid_request("Not authenticated yet")

        if not approved:
            audit("authorize_denied", reason="user_denied", client_id=session.client_id)
            return append_query_params(
                session.redirect_uri,
                {
                    "error": "access_denied",
                    "error_description": "User denied the request",
                    "state": session.state,
                },
            )

        if not session.is_consent_given:
            consented = replace(session, status=SessionStatus.CONSENT_GIVEN)
            if not await self.store.update_session(consented, SessionStatus.AUTHENTICATED):
                raise SessionNotFoundError()

        return await self.create_authorization_code(session.session_id)

    # -- authorization codes -----------------------------------------------------

    async def create_authorization_code(self, session_id: str) -> str:
        session = await self.get_session(session_id)
        if not (session.is_authenticated and session.is_consent_given):
            raise invalid_request("Authentication or consent not completed")

        now = self._clock()
        code = AuthorizationCode(
            code=generate_token(),
            client_id=session.client_id,
            redirect_uri=session.redirect_uri,
            profile_url=session.profile_url,
            scopes=list(session.scopes),
            code_challenge=session.code_challenge,
            code_challenge_method=session.code_challenge_method,
            created_at=now,
            expires_at=now + self.settings.authorization_code_minutes * 60,
        )
        if not await self.store.consume_session(session.session_id, code):
            raise SessionNotFoundError()

        audit(
            "code_issued",
            client_id=code.client_id,
            profile_url=code.profile_url,
            scope=" ".join(code.scopes),
            code=redact(code.code),
        )
        return append_query_params(
            session.redirect_uri,
            {"code": code.code, "state": session.state, "iss": self.settings.issuer},
        )

    async def validate_authorization_code(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        code_verifier: str,
        *,
        require_scope: bool = False,
    ) -> AuthorizationCode:
        """Check a code against its client, redirect_uri and PKCE verifier, then mark it used.

        With ``require_scope`` a code minted without scopes is refused before it
        is marked used, so it can still be redeemed at the authorization endpoint.
        """
        record = await self.store.get_authorization_code(code)
        if record is None:
            logger.warning("Authorization code not found or expired: %s", redact(code))
            raise invalid_grant(INVALID_CODE_DESCRIPTION)
        if record.client_id != client_id:
            logger.warning("Client ID mismatch for code %s", redact(code))
            raise invalid_grant(INVALID_CODE_DESCRIPTION)
        if record.redirect_uri != redirect_uri:
            logger.warning("Redirect URI mismatch for code %s", redact(code))
            raise invalid_grant(INVALID_CODE_DESCRIPTION)
        if not validate_code_verifier(
            code_verifier, record.code_challenge, record.code_challenge_method
        ):
            logger.warning("PKCE validation failed for code %s", redact(code))
            raise invalid_grant(INVALID_CODE_DESCRIPTION)
        if require_scope and not record.scopes:
            raise invalid_grant(
                "This authorization code was issued with no scope and cannot be exchanged "
                "for an access token. Use the authorization endpoint instead."
            )

        if not await self.store.mark_code_used(code):
            logger.warning("Authorization code %s was redeemed concurrently", redact(code))
            raise invalid_grant(INVALID_CODE_DESCRIPTION)

        return replace(record, is_used=True)

    async def verify_profile_code(self, form: Mapping[str, str]) -> dict[str, str]:
        """Profile-only redemption at the authorization endpoint: returns ``{"me": ...}``."""
        if form.get("grant_type") != "authorization_code":
            raise OAuthError(
                "unsupported_grant_type", "Only authorization_code is supported here"
            )

        code = form.get("code")
        client_id = form.get("client_id")
        redirect_uri = form.get("redirect_uri")
        code_verifier = form.get("code_verifier")
        if not code or not client_id or not redirect_uri or not code_verifier:
            raise invalid_request("code, client_id, redirect_uri, and code_verifier are required")

        record = await self.validate_authorization_code(code, client_id, redirect_uri, code_verifier)
        audit("profile_verified", client_id=client_id, profile_url=record.profile_url)
        return {"me": record.profile_url}
