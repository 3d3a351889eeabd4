from __future__ import annotations

import html
import logging
import urllib.parse

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, RedirectResponse, Response

from auth.authorization import AuthorizationRequest, AuthorizationService
from auth.cors import cors_error_response, cors_json_response, mount_preflight_route
from auth.errors import AuthorizationRequestError, OAuthError
from auth.settings import Settings
from auth.token_grants import SUPPORTED_GRANT_TYPES, TokenGrantService
from auth.urls import append_query_params, is_valid_https_url

logger = logging.getLogger("indieauth.http")

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}
METADATA_PATHS = (
    "/.well-known/oauth-authorization-server",
    "/.well-known/indieauth-server",
)
SERVICE_DOCUMENTATION = "https://indieauth.spec.indieweb.org/"

ERROR_PAGE = """<!doctype html>
<html lang="en">
<head><meta charset="utf-8"><title>Sign-in error</title></head>
<body>
<main>
<h1>Sign-in could not be completed</h1>
<p><strong>{error}</strong></p>
<p>{description}</p>
</main>
</body>
</html>
"""


def extract_bearer_token(authorization_header: str | None) -> str | None:
    if not authorization_header:
        return None
    scheme, _, token = authorization_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def error_page_url(error: str, description: str) -> str:
    query = urllib.parse.urlencode(
        {"error": error, "error_description": description}, quote_via=urllib.parse.quote
    )
    return f"/error?{query}"


class OAuthServer:
    def __init__(
        self,
        *,
        settings: Settings,
        authorization: AuthorizationService,
        grants: TokenGrantService,
    ) -> None:
        self.settings = settings
        self.authorization = authorization
        self.grants = grants
        self.cors_origins = set(settings.cors_origins)

    def metadata_payload(self) -> dict:
        issuer = self.settings.issuer
        return {
            "issuer": issuer,
            "authorization_endpoint": f"{issuer}/auth",
            "token_endpoint": f"{issuer}/token",
            "introspection_endpoint": f"{issuer}/token/introspect",
            "introspection_endpoint_auth_methods_supported": ["Bearer"],
            "revocation_endpoint": f"{issuer}/token/revoke",
            "response_types_supported": ["code"],
            "grant_types_supported": list(SUPPORTED_GRANT_TYPES),
            "code_challenge_methods_supported": ["S256"],
            "scopes_supported": list(self.settings.scopes_supported),
            "service_documentation": SERVICE_DOCUMENTATION,
        }

    def mount_routes(self, app: Starlette) -> None:
        for path in METADATA_PATHS:
            app.add_route(path, self._handle_metadata, methods=["GET"])

        app.add_route("/auth", self._handle_authorize, methods=["GET"])
        app.add_route("/auth", self._handle_profile_verification, methods=["POST"])
        app.add_route("/token", self._handle_token, methods=["POST"])
        app.add_route("/token/introspect", self._handle_introspect, methods=["POST"])
        app.add_route("/token/revoke", self._handle_revoke, methods=["POST"])
        app.add_route("/callback/{provider_type}", self._handle_callback, methods=["GET"])
        app.add_route("/api/auth/providers", self._handle_list_providers, methods=["GET"])
        app.add_route("/api/auth/select-provider", self._handle_select_provider, methods=["POST"])
        app.add_route("/api/auth/consent", self._handle_consent_info, methods=["GET"])
        app.add_route("/api/auth/consent", self._handle_submit_consent, methods=["POST"])
        app.add_route("/error", self._handle_error_page, methods=["GET"])

        paths = (
            *METADATA_PATHS,
            "/auth",
            "/token",
            "/token/introspect",
            "/token/revoke",
            "/api/auth/providers",
            "/api/auth/select-provider",
            "/api/auth/consent",
        )
        for path in paths:
            mount_preflight_route(app, path, self.cors_origins)

    # -- protocol endpoints ------------------------------------------------------

    async def _handle_metadata(self, request: Request) -> Response:
        return cors_json_response(request, self.cors_origins, self.metadata_payload())

    async def _handle_authorize(self, request: Request) -> Response:
        auth_request = AuthorizationRequest.from_params(request.query_params)
        try:
            location = await self.authorization.begin_authorization(auth_request)
        except AuthorizationRequestError as error:
            logger.warning(
                "Authorization request from %s rejected: %s (%s)",
                auth_request.client_id,
                error.error,
                error.description,
            )
            return RedirectResponse(
                url=self._authorization_error_location(auth_request, error), status_code=302
            )
        return RedirectResponse(url=location, status_code=302)

    def _authorization_error_location(
        self, auth_request: AuthorizationRequest, error: AuthorizationRequestError
    ) -> str:
        redirect_uri = auth_request.redirect_uri
        if not error.redirect_untrusted and redirect_uri and is_valid_https_url(redirect_uri):
            return append_query_params(
                redirect_uri,
                {
                    "error": error.error,
                    "error_description": error.description,
                    "state": auth_request.state or "",
                },
            )
        return error_page_url(error.error, error.description)

    async def _handle_profile_verification(self, request: Request) -> Response:
        form_data = await self._form(request)
        try:
            payload = await self.authorization.verify_profile_code(form_data)
        except OAuthError as error:
            return self._error(request, error)
        return cors_json_response(request, self.cors_origins, payload, headers=NO_STORE_HEADERS)

    async def _handle_token(self, request: Request) -> Response:
        form_data = await self._form(request)
        try:
            payload = await self.grants.exchange(form_data)
        except OAuthError as error:
            return self._error(request, error)
        return cors_json_response(request, self.cors_origins, payload, headers=NO_STORE_HEADERS)

    async def _handle_introspect(self, request: Request) -> Response:
        form_data = await self._form(request)
        bearer = extract_bearer_token(request.headers.get("authorization"))
        try:
            payload = await self.grants.introspect(form_data.get("token"), bearer)
        except OAuthError as error:
            return self._error(request, error)
        return cors_json_response(request, self.cors_origins, payload, headers=NO_STORE_HEADERS)

    async def _handle_revoke(self, request: Request) -> Response:
        form_data = await self._form(request)
        await self.grants.revoke(form_data.get("token"))
        return cors_json_response(request, self.cors_origins, {})

    # -- provider round-trip and presentation API ------------------------------

    async def _handle_callback(self, request: Request) -> Response:
        params = request.query_params
        try:
            location = await self.authorization.complete_callback(
                request.path_params["provider_type"],
                code=params.get("code"),
                state=params.get("state"),
                error=params.get("error"),
                error_description=params.get("error_description"),
            )
        except OAuthError as error:
            return RedirectResponse(
                url=error_page_url(error.error, error.description), status_code=302
            )
        return RedirectResponse(url=location, status_code=302)

    async def _handle_list_providers(self, request: Request) -> Response:
        try:
            session = await self.authorization.get_session(request.query_params.get("session_id"))
        except OAuthError as error:
            return self._error(request, error)

        return cors_json_response(
            request,
            self.cors_origins,
            {
                "profile_url": session.profile_url,
                "providers": [
                    {
                        "type": provider.type,
                        "name": provider.display_name,
                        "profile_url": provider.profile_url,
                        "icon_url": provider.icon_url,
                    }
                    for provider in session.providers
                ],
            },
        )

    async def _handle_select_provider(self, request: Request) -> Response:
        payload = await self._json(request)
        if payload is None:
            return self._error(request, OAuthError("invalid_request", "Invalid JSON body."))
        try:
            redirect_url = await self.authorization.select_provider(
                payload.get("session_id"), payload.get("provider_type")
            )
        except OAuthError as error:
            return self._error(request, error)
        return cors_json_response(request, self.cors_origins, {"redirect_url": redirect_url})

    async def _handle_consent_info(self, request: Request) -> Response:
        try:
            info = await self.authorization.get_consent_info(
                request.query_params.get("session_id")
            )
        except OAuthError as error:
            return self._error(request, error)
        return cors_json_response(request, self.cors_origins, info)

    async def _handle_submit_consent(self, request: Request) -> Response:
        payload = await self._json(request)
        if payload is None:
            return self._error(request, OAuthError("invalid_request", "Invalid JSON body."))
        try:
            redirect_url = await self.authorization.submit_consent(
                payload.get("session_id"), payload.get("approved") is True
            )
        except OAuthError as error:
            return self._error(request, error)
        return cors_json_response(request, self.cors_origins, {"redirect_url": redirect_url})

    async def _handle_error_page(self, request: Request) -> Response:
        error = request.query_params.get("error") or "server_error"
        description = request.query_params.get("error_description") or ""
        return HTMLResponse(
            ERROR_PAGE.format(error=html.escape(error), description=html.escape(description)),
            status_code=400,
        )

    # -- helpers ---------------------------------------------------------------

    async def _form(self, request: Request) -> dict[str, str]:
        form = await request.form()
        return {key: str(value) for key, value in form.multi_items()}

    async def _json(self, request: Request) -> dict | None:
        try:
            payload = await request.json()
        except ValueError:
            return None
        return payload if isinstance(payload, dict) else None

    def _error(self, request: Request, error: OAuthError) -> Response:
        return cors_error_response(
            request=request,
            allowed_origins=self.cors_origins,
            code=error.error,
            description=error.description,
            status_code=error.status_code,
        )
