from itsdangerous import URLSafeSerializer

from registrar.security import hash_password, issue_token, read_token, verify_password


def test_password_hash_round_trip() -> None:
    stored = hash_password("s3cret")
    assert stored.startswith("pbkdf2_sha256$")
    assert verify_password("s3cret", stored)
    assert not verify_password("S3cret", stored)


def test_same_password_gets_distinct_salts() -> None:
    assert hash_password("pw") != hash_password("pw")
    assert hash_password("pw", salt=b"0" * 16) == hash_password("pw", salt=b"0" * 16)


def test_malformed_stored_passwords_never_verify() -> None:
    assert not verify_password("pw", "pw")
    assert not verify_password("pw", "")
    assert not verify_password("pw", "md5$1$00$00")
    assert not verify_password("pw", "pbkdf2_sha256$many$00$00")
    assert not verify_password("pw", "pbkdf2_sha256$10$zz$00")
    assert not verify_password("pw", "pbkdf2_sha256$0$00$00")


def test_tokens_carry_the_user_id() -> None:
    assert read_token(issue_token("S1")) == "S1"


def test_tampered_or_foreign_tokens_are_rejected() -> None:
    token = issue_token("S1")
    assert read_token(token + "x") is None
    assert read_token("garbage") is None
    foreign = URLSafeSerializer("other-secret", salt="registrar").dumps({"user_id": "A1"})
    assert read_token(foreign) is None
