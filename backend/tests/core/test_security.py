"""Pruebas de verificación de firmas y tokens de webhook."""

from __future__ import annotations

from embudo.core.security import (
    build_signature,
    token_meta,
    verify_shared_token,
    verify_signature,
)

BODY = b'{"object":"page","entry":[]}'


def test_signature_with_prefix_matches_primary_secret() -> None:
    header = "sha256=" + build_signature("primary", BODY)

    check = verify_signature(BODY, header, secret="primary", secondary_secret="other")

    assert check.ok
    assert check.matched_secret_kind == "primary"


def test_signature_without_prefix_and_uppercase_is_accepted() -> None:
    header = build_signature("primary", BODY).upper()

    assert verify_signature(BODY, header, secret="primary").ok


def test_secondary_secret_is_reported() -> None:
    header = "sha256=" + build_signature("sibling", BODY)

    check = verify_signature(BODY, header, secret="primary", secondary_secret="sibling")

    assert check.ok
    assert check.matched_secret_kind == "secondary"


def test_tampered_body_is_rejected() -> None:
    header = "sha256=" + build_signature("primary", BODY)

    check = verify_signature(BODY + b" ", header, secret="primary")

    assert not check.ok
    assert check.matched_secret_kind is None


def test_missing_header_is_rejected() -> None:
    assert not verify_signature(BODY, None, secret="primary").ok


def test_unconfigured_and_bypass_modes_accept() -> None:
    assert verify_signature(BODY, None, secret=None).matched_secret_kind == "unconfigured"
    assert verify_signature(BODY, "garbage", secret="primary", bypass=True).matched_secret_kind == "bypass"


def test_shared_token_only_required_when_configured() -> None:
    assert verify_shared_token(None, None)
    assert verify_shared_token("tg", "tg")
    assert not verify_shared_token("tg", None)
    assert not verify_shared_token("tg", "tg ")


def test_token_meta_never_reveals_value() -> None:
    assert token_meta(None) == {"present": False, "len": 0}
    assert token_meta("  abcdefghij ") == {"present": True, "len": 10, "prefix": "abcd", "suffix": "ghij"}
