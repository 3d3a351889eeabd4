import pytest

from auth.pkce import (
    generate_code_challenge,
    generate_code_verifier,
    is_well_formed_verifier,
    validate_code_verifier,
)
from tests.oauth_helpers import CODE_CHALLENGE, CODE_VERIFIER


def test_code_challenge_matches_rfc7636_example() -> None:
    assert generate_code_challenge(CODE_VERIFIER) == CODE_CHALLENGE


def test_validate_accepts_matching_s256_pair() -> None:
    assert validate_code_verifier(CODE_VERIFIER, CODE_CHALLENGE, "S256")


@pytest.mark.parametrize("method", ["plain", "s256", "", None])
def test_validate_rejects_other_methods(method) -> None:
    assert not validate_code_verifier(CODE_VERIFIER, CODE_CHALLENGE, method)


@pytest.mark.parametrize(
    "verifier",
    [
        None,
        "",
        "a" * 42,
        "a" * 129,
        CODE_VERIFIER[:-1] + "+",
        CODE_VERIFIER[:-1] + "=",
        CODE_VERIFIER[:-1] + "Y",
    ],
)
def test_validate_rejects_bad_verifiers(verifier) -> None:
    assert not validate_code_verifier(verifier, CODE_CHALLENGE, "S256")


def test_plain_is_refused_even_when_challenge_equals_verifier() -> None:
    assert not validate_code_verifier(CODE_VERIFIER, CODE_VERIFIER, "plain")


def test_generated_verifiers_round_trip() -> None:
    verifier = generate_code_verifier()

    assert is_well_formed_verifier(verifier)
    assert validate_code_verifier(verifier, generate_code_challenge(verifier), "S256")


def test_verifier_bounds_and_alphabet() -> None:
    assert is_well_formed_verifier("a" * 43)
    assert is_well_formed_verifier("A-._~" * 25 + "abc")
    assert not is_well_formed_verifier("a" * 42 + " ")
