from __future__ import annotations

import base64
import hashlib
import secrets
import string

SUPPORTED_METHOD = "S256"
VERIFIER_MIN_LENGTH = 43
VERIFIER_MAX_LENGTH = 128
UNRESERVED_CHARACTERS = frozenset(string.ascii_letters + string.digits + "-._~")


def generate_code_verifier() -> str:
    while True:
        verifier = secrets.token_urlsafe(64)
        if VERIFIER_MIN_LENGTH <= len(verifier) <= VERIFIER_MAX_LENGTH:
            return verifier


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def is_well_formed_verifier(verifier: str | None) -> bool:
    if not verifier:
        return False
    if not VERIFIER_MIN_LENGTH <= len(verifier) <= VERIFIER_MAX_LENGTH:
        return False
    return all(char in UNRESERVED_CHARACTERS for char in verifier)


def validate_code_verifier(verifier: str | None, challenge: str | None, method: str | None) -> bool:
    """RFC 7636 S256 check. ``plain`` is never accepted."""
    if method != SUPPORTED_METHOD or not challenge:
        return False
    if not is_well_formed_verifier(verifier):
        return False
    return generate_code_challenge(verifier) == challenge
