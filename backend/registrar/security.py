from __future__ import annotations

import hashlib
import hmac
import os

from itsdangerous import BadSignature, URLSafeSerializer

from . import config

PBKDF2_ROUNDS = 120_000

serializer = URLSafeSerializer(config.SESSION_SECRET, salt="registrar")


def hash_password(password: str, salt: bytes | None = None) -> str:
    salt = salt or os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ROUNDS)
    return f"pbkdf2_sha256${PBKDF2_ROUNDS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, rounds, salt_hex, digest_hex = stored.split("$")
        rounds, salt = int(rounds), bytes.fromhex(salt_hex)
    except ValueError:
        return False
    if scheme != "pbkdf2_sha256" or rounds <= 0:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(digest.hex(), digest_hex)


def issue_token(user_id: str) -> str:
    return serializer.dumps({"user_id": user_id})


def read_token(token: str) -> str | None:
    try:
        payload = serializer.loads(token)
    except BadSignature:
        return None
    if not isinstance(payload, dict):
        return None
    return payload.get("user_id")
