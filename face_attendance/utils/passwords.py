"""
密码哈希工具（PBKDF2-SHA256）
"""
import hashlib
import hmac
import secrets

PASSWORD_HASH_ALGO = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 120_000


def hash_password(password: str, *, salt: str = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"{PASSWORD_HASH_ALGO}${PASSWORD_HASH_ITERATIONS}${salt_value}${digest}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algo, rounds_text, salt_value, expected_digest = encoded.split("$", 3)
        rounds = int(rounds_text)
    except (AttributeError, ValueError):
        return False
    if algo != PASSWORD_HASH_ALGO:
        return False

    candidate_digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        rounds,
    ).hex()
    return hmac.compare_digest(candidate_digest, expected_digest)
