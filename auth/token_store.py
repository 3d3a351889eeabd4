from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterator

from auth.models import (
    AuthorizationCode,
    DiscoveredProvider,
    PendingSession,
    RefreshToken,
    SessionStatus,
    join_scopes,
    parse_scopes,
)

logger = logging.getLogger("indieauth.store")


class AuthStore(ABC):
    """Persistence for pending sessions, authorization codes and refresh tokens.

    Every read treats rows whose ``expires_at`` has passed as absent. The
    compare-and-set operations return ``False`` when their precondition no
    longer holds, leaving the store unchanged.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    @abstractmethod
    async def save_session(self, session: PendingSession) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_session(self, session_id: str) -> PendingSession | None:
        raise NotImplementedError

    @abstractmethod
    async def find_session_by_provider_state(self, provider_state: str) -> PendingSession | None:
        raise NotImplementedError

    @abstractmethod
    async def update_session(self, session: PendingSession, expected_status: SessionStatus) -> bool:
        """Persist ``session`` only if the stored row is live and still in ``expected_status``."""
        raise NotImplementedError

    @abstractmethod
    async def consume_session(self, session_id: str, code: AuthorizationCode) -> bool:
        """Delete a consented session and insert its authorization code as one unit."""
        raise NotImplementedError

    @abstractmethod
    async def get_authorization_code(self, code: str) -> AuthorizationCode | None:
        raise NotImplementedError

    @abstractmethod
    async def mark_code_used(self, code: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def save_refresh_token(self, token: RefreshToken) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_refresh_token(self, token: str) -> RefreshToken | None:
        raise NotImplementedError

    @abstractmethod
    async def rotate_refresh_token(self, old_token: str, new_token: RefreshToken) -> bool:
        """Revoke ``old_token`` and insert ``new_token``; fails if the old one is no longer live."""
        raise NotImplementedError

    @abstractmethod
    async def revoke_refresh_token(self, token: str) -> bool:
        raise NotImplementedError


class MemoryAuthStore(AuthStore):
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock=clock)
        self._sessions: dict[str, PendingSession] = {}
        self._provider_states: dict[str, str] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._refresh_tokens: dict[str, RefreshToken] = {}

    def _live_session(self, session_id: str) -> PendingSession | None:
        session = self._sessions.get(session_id)
        if session is None or session.expires_at <= self._clock():
            return None
        return session

    def _drop_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None and session.provider_state:
            self._provider_states.pop(session.provider_state, None)

    async def save_session(self, session: PendingSession) -> None:
        self._sessions[session.session_id] = session
        if session.provider_state:
            self._provider_states[session.provider_state] = session.session_id

    async def get_session(self, session_id: str) -> PendingSession | None:
        return self._live_session(session_id)

    async def find_session_by_provider_state(self, provider_state: str) -> PendingSession | None:
        session_id = self._provider_states.get(provider_state)
        if session_id is None:
            return None
        return self._live_session(session_id)

    async def update_session(self, session: PendingSession, expected_status: SessionStatus) -> bool:
        current = self._live_session(session.session_id)
        if current is None or current.status is not expected_status:
            return False
        if current.provider_state and current.provider_state != session.provider_state:
            self._provider_states.pop(current.provider_state, None)
        await self.save_session(session)
        return True

    async def consume_session(self, session_id: str, code: AuthorizationCode) -> bool:
        current = self._live_session(session_id)
        if current is None or current.status is not SessionStatus.CONSENT_GIVEN:
            return False
        self._drop_session(session_id)
        self._codes[code.code] = code
        return True

    async def get_authorization_code(self, code: str) -> AuthorizationCode | None:
        record = self._codes.get(code)
        if record is None or record.is_used or record.expires_at <= self._clock():
            return None
        return record

    async def mark_code_used(self, code: str) -> bool:
        record = await self.get_authorization_code(code)
        if record is None:
            return False
        self._codes[code] = replace(record, is_used=True)
        return True

    async def save_refresh_token(self, token: RefreshToken) -> None:
        self._refresh_tokens[token.token] = token

    async def get_refresh_token(self, token: str) -> RefreshToken | None:
        record = self._refresh_tokens.get(token)
        if record is None or record.is_revoked or record.expires_at <= self._clock():
            return None
        return record

    async def rotate_refresh_token(self, old_token: str, new_token: RefreshToken) -> bool:
        record = await self.get_refresh_token(old_token)
        if record is None:
            return False
        self._refresh_tokens[old_token] = replace(record, is_revoked=True)
        self._refresh_tokens[new_token.token] = new_token
        return True

    async def revoke_refresh_token(self, token: str) -> bool:
        record = self._refresh_tokens.get(token)
        if record is None or record.is_revoked:
            return False
        self._refresh_tokens[token] = replace(record, is_revoked=True)
        return True


SCHEMA = """
CREATE TABLE IF NOT EXISTS pending_sessions (
    session_id TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    redirect_uri TEXT NOT NULL,
    state TEXT NOT NULL,
    code_challenge TEXT NOT NULL,
    code_challenge_method TEXT NOT NULL,
    scopes TEXT NOT NULL,
    profile_url TEXT NOT NULL,
    providers TEXT NOT NULL,
    status TEXT NOT NULL,
    selected_provider_type TEXT,
    provider_state TEXT,
    client_name TEXT,
    client_logo_uri TEXT,
    created_at REAL NOT NULL,
    expires_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_pending_sessions_provider_state
    ON pending_sessions (provider_state, expires_at);
CREATE TABLE IF NOT EXISTS authorization_codes (
    code TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    redirect_uri TEXT NOT NULL,
    profile_url TEXT NOT NULL,
    scopes TEXT NOT NULL,
    code_challenge TEXT NOT NULL,
    code_challenge_method TEXT NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL NOT NULL,
    is_used INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS refresh_tokens (
    token TEXT PRIMARY KEY,
    profile_url TEXT NOT NULL,
    client_id TEXT NOT NULL,
    scopes TEXT NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL NOT NULL,
    is_revoked INTEGER NOT NULL DEFAULT 0
);
"""

SESSION_COLUMNS = (
    "session_id, client_id, redirect_uri, state, code_challenge, code_challenge_method, "
    "scopes, profile_url, providers, status, selected_provider_type, provider_state, "
    "client_name, client_logo_uri, created_at, expires_at"
)


def _session_from_row(row: sqlite3.Row) -> PendingSession:
    return PendingSession(
        session_id=row["session_id"],
        client_id=row["client_id"],
        redirect_uri=row["redirect_uri"],
        state=row["state"],
        code_challenge=row["code_challenge"],
        code_challenge_method=row["code_challenge_method"],
        scopes=parse_scopes(row["scopes"]),
        profile_url=row["profile_url"],
        providers=[DiscoveredProvider.from_dict(item) for item in json.loads(row["providers"])],
        status=SessionStatus(row["status"]),
        selected_provider_type=row["selected_provider_type"],
        provider_state=row["provider_state"],
        client_name=row["client_name"],
        client_logo_uri=row["client_logo_uri"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )


def _session_values(session: PendingSession) -> tuple:
    return (
        session.session_id,
        session.client_id,
        session.redirect_uri,
        session.state,
        session.code_challenge,
        session.code_challenge_method,
        join_scopes(session.scopes),
        session.profile_url,
        json.dumps([provider.to_dict() for provider in session.providers]),
        session.status.value,
        session.selected_provider_type,
        session.provider_state,
        session.client_name,
        session.client_logo_uri,
        session.created_at,
        session.expires_at,
    )


def _code_from_row(row: sqlite3.Row) -> AuthorizationCode:
    return AuthorizationCode(
        code=row["code"],
        client_id=row["client_id"],
        redirect_uri=row["redirect_uri"],
        profile_url=row["profile_url"],
        scopes=parse_scopes(row["scopes"]),
        code_challenge=row["code_challenge"],
        code_challenge_method=row["code_challenge_method"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        is_used=bool(row["is_used"]),
    )


def _refresh_from_row(row: sqlite3.Row) -> RefreshToken:
    return RefreshToken(
        token=row["token"],
        profile_url=row["profile_url"],
        client_id=row["client_id"],
        scopes=parse_scopes(row["scopes"]),
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        is_revoked=bool(row["is_revoked"]),
    )


class SqliteAuthStore(AuthStore):
    def __init__(
        self,
        path: str | Path = "indieauth.db",
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(clock=clock)
        self._path = Path(path)
        self._lock = threading.RLock()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock, self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _fetch_one(self, query: str, params: tuple) -> sqlite3.Row | None:
        with self._connect() as conn:
            return conn.execute(query, params).fetchone()

    async def save_session(self, session: PendingSession) -> None:
        with self._transaction() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO pending_sessions ({SESSION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _session_values(session),
            )

    async def get_session(self, session_id: str) -> PendingSession | None:
        row = self._fetch_one(
            f"SELECT {SESSION_COLUMNS} FROM pending_sessions WHERE session_id = ? AND expires_at > ?",
            (session_id, self._clock()),
        )
        return _session_from_row(row) if row is not None else None

    async def find_session_by_provider_state(self, provider_state: str) -> PendingSession | None:
        row = self._fetch_one(
            f"SELECT {SESSION_COLUMNS} FROM pending_sessions "
            "WHERE provider_state = ? AND expires_at > ? LIMIT 1",
            (provider_state, self._clock()),
        )
        return _session_from_row(row) if row is not None else None

    async def update_session(self, session: PendingSession, expected_status: SessionStatus) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE pending_sessions SET status = ?, selected_provider_type = ?, "
                "provider_state = ? "
                "WHERE session_id = ? AND status = ? AND expires_at > ?",
                (
                    session.status.value,
                    session.selected_provider_type,
                    session.provider_state,
                    session.session_id,
                    expected_status.value,
                    self._clock(),
                ),
            )
            return cursor.rowcount == 1

    async def consume_session(self, session_id: str, code: AuthorizationCode) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM pending_sessions WHERE session_id = ? AND status = ? AND expires_at > ?",
                (session_id, SessionStatus.CONSENT_GIVEN.value, self._clock()),
            )
            if cursor.rowcount != 1:
                return False
            conn.execute(
                "INSERT INTO authorization_codes (code, client_id, redirect_uri, profile_url, "
                "scopes, code_challenge, code_challenge_method, created_at, expires_at, is_used) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0)",
                (
                    code.code,
                    code.client_id,
                    code.redirect_uri,
                    code.profile_url,
                    join_scopes(code.scopes),
                    code.code_challenge,
                    code.code_challenge_method,
                    code.created_at,
                    code.expires_at,
                ),
            )
            return True

    async def get_authorization_code(self, code: str) -> AuthorizationCode | None:
        row = self._fetch_one(
            "SELECT * FROM authorization_codes WHERE code = ? AND is_used = 0 AND expires_at > ?",
            (code, self._clock()),
        )
        return _code_from_row(row) if row is not None else None

    async def mark_code_used(self, code: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE authorization_codes SET is_used = 1 "
                "WHERE code = ? AND is_used = 0 AND expires_at > ?",
                (code, self._clock()),
            )
            return cursor.rowcount == 1

    async def save_refresh_token(self, token: RefreshToken) -> None:
        with self._transaction() as conn:
            self._insert_refresh_token(conn, token)

    def _insert_refresh_token(self, conn: sqlite3.Connection, token: RefreshToken) -> None:
        conn.execute(
            "INSERT INTO refresh_tokens (token, profile_url, client_id, scopes, created_at, "
            "expires_at, is_revoked) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                token.token,
                token.profile_url,
                token.client_id,
                join_scopes(token.scopes),
                token.created_at,
                token.expires_at,
                int(token.is_revoked),
            ),
        )

    async def get_refresh_token(self, token: str) -> RefreshToken | None:
        row = self._fetch_one(
            "SELECT * FROM refresh_tokens WHERE token = ? AND is_revoked = 0 AND expires_at > ?",
            (token, self._clock()),
        )
        return _refresh_from_row(row) if row is not None else None

    async def rotate_refresh_token(self, old_token: str, new_token: RefreshToken) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE refresh_tokens SET is_revoked = 1 "
                "WHERE token = ? AND is_revoked = 0 AND expires_at > ?",
                (old_token, self._clock()),
            )
            if cursor.rowcount != 1:
                return False
            self._insert_refresh_token(conn, new_token)
            return True

    async def revoke_refresh_token(self, token: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE refresh_tokens SET is_revoked = 1 WHERE token = ? AND is_revoked = 0",
                (token,),
            )
            return cursor.rowcount == 1
