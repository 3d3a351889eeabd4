from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_SCOPES = ["profile", "email", "create", "update", "delete", "media"]


@dataclass(frozen=True)
class GitHubSettings:
    client_id: str
    client_secret: str
    authorize_url: str = "https://github.com/login/oauth/authorize"
    token_url: str = "https://github.com/login/oauth/access_token"
    user_url: str = "https://api.github.com/user"


@dataclass(frozen=True)
class Settings:
    base_url: str
    jwt_secret: str
    jwt_issuer: str = ""
    jwt_audience: str = ""
    access_token_minutes: int = 15
    authorization_code_minutes: int = 10
    refresh_token_days: int = 30
    pending_session_minutes: int = 30
    introspection_secret: str | None = None
    allowed_profile_hosts: tuple[str, ...] = ()
    cors_origins: frozenset[str] = frozenset()
    scopes_supported: tuple[str, ...] = tuple(DEFAULT_SCOPES)
    discovery_timeout_seconds: float = 10.0
    github: GitHubSettings | None = field(default=None)

    @property
    def issuer(self) -> str:
        return self.base_url.rstrip("/")

    @property
    def token_issuer(self) -> str:
        return self.jwt_issuer or self.issuer

    @property
    def token_audience(self) -> str:
        return self.jwt_audience or self.issuer

    @property
    def access_token_seconds(self) -> int:
        return self.access_token_minutes * 60

    def callback_url(self, provider_type: str) -> str:
        return f"{self.issuer}/callback/{provider_type}"
