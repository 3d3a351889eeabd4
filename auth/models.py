from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field


class SessionStatus(str, enum.Enum):
    CREATED = "created"
    PROVIDER_SELECTED = "provider_selected"
    AUTHENTICATED = "authenticated"
    CONSENT_GIVEN = "consent_given"


@dataclass(frozen=True)
class DiscoveredProvider:
    type: str
    display_name: str
    profile_url: str
    icon_url: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict) -> "DiscoveredProvider":
        return cls(
            type=payload["type"],
            display_name=payload.get("display_name", payload["type"]),
            profile_url=payload["profile_url"],
            icon_url=payload.get("icon_url"),
        )


@dataclass(frozen=True)
class ClientInfo:
    client_id: str
    client_name: str | None = None
    client_uri: str | None = None
    logo_uri: str | None = None
    redirect_uris: list[str] = field(default_factory=list)
    was_fetched: bool = False


@dataclass(frozen=True)
class PendingSession:
    session_id: str
    client_id: str
    redirect_uri: str
    state: str
    code_challenge: str
    code_challenge_method: str
    scopes: list[str]
    profile_url: str
    providers: list[DiscoveredProvider]
    created_at: float
    expires_at: float
    status: SessionStatus = SessionStatus.CREATED
    selected_provider_type: str | None = None
    provider_state: str | None = None
    client_name: str | None = None
    client_logo_uri: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.status in (SessionStatus.AUTHENTICATED, SessionStatus.CONSENT_GIVEN)

    @property
    def is_consent_given(self) -> bool:
        return self.status is SessionStatus.CONSENT_GIVEN

    def selected_provider(self) -> DiscoveredProvider | None:
        if self.selected_provider_type is None:
            return None
        for provider in self.providers:
            if provider.type == self.selected_provider_type:
                return provider
        return None


@dataclass(frozen=True)
class AuthorizationCode:
    code: str
    client_id: str
    redirect_uri: str
    profile_url: str
    scopes: list[str]
    code_challenge: str
    code_challenge_method: str
    created_at: float
    expires_at: float
    is_used: bool = False


@dataclass(frozen=True)
class RefreshToken:
    token: str
    profile_url: str
    client_id: str
    scopes: list[str]
    created_at: float
    expires_at: float
    is_revoked: bool = False


def parse_scopes(scope: str | None) -> list[str]:
    if not scope or not scope.strip():
        return []
    return scope.split()


def join_scopes(scopes: list[str]) -> str:
    return " ".join(scopes)
