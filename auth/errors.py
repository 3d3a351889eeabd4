from __future__ import annotations


class OAuthError(RuntimeError):
    """An OAuth/IndieAuth protocol error with its wire code and HTTP status."""

    def __init__(self, error: str, description: str, status_code: int = 400) -> None:
        super().__init__(description)
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_payload(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


class AuthorizationRequestError(OAuthError):
    """Rejected authorization request.

    ``redirect_untrusted`` is set while the request's redirect_uri has not yet
    been proven safe; such errors must never be delivered to that redirect_uri.
    """

    def __init__(
        self,
        error: str,
        description: str,
        *,
        redirect_untrusted: bool = False,
    ) -> None:
        super().__init__(error, description, 400)
        self.redirect_untrusted = redirect_untrusted


class SessionNotFoundError(OAuthError):
    def __init__(self, description: str = "Session not found or expired") -> None:
        super().__init__("invalid_state", description, 404)


class ProviderError(OAuthError):
    """Failure talking to, or verifying against, an external identity provider."""

    def __init__(self, error: str, description: str, status_code: int = 502) -> None:
        super().__init__(error, description, status_code)


def invalid_request(description: str) -> OAuthError:
    return OAuthError("invalid_request", description)


def invalid_grant(description: str) -> OAuthError:
    return OAuthError("invalid_grant", description)
