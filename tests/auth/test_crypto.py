from tally.auth.crypto import (
    hash_password,
    new_session_token,
    session_id_for_token,
    verify_password,
)


def test_password_hash_verifies_and_is_salted() -> None:
    first = hash_password("secret1", iterations=1_000)
    second = hash_password("secret1", iterations=1_000)
    assert first != second
    assert first.startswith("pbkdf2_sha256$1000$")
    assert verify_password("secret1", first)
    assert not verify_password("secret2", first)


def test_verify_rejects_malformed_hash() -> None:
    assert not verify_password("secret1", "plaintext")
    assert not verify_password("secret1", "md5$1$abc$def")


def test_session_tokens_are_hex_and_unique() -> None:
    tokens = {new_session_token() for _ in range(50)}
    assert len(tokens) == 50
    assert all(len(t) == 64 and int(t, 16) >= 0 for t in tokens)


def test_session_id_is_stable_digest_of_token() -> None:
    token = new_session_token()
    assert session_id_for_token(token) == session_id_for_token(token)
    assert session_id_for_token(token) != token
