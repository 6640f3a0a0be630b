"""Minimal RFC 6238 TOTP + backup codes for two-factor auth.

SHA-1, 30 second step, 6 digits; verification accepts +/- `WINDOW` steps of
clock drift. Backup codes are stored hashed and consumed on use.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import struct
import time
from urllib.parse import quote

STEP_SECONDS = 30
DIGITS = 6
WINDOW = 2
BACKUP_CODE_COUNT = 10
BACKUP_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ISSUER = "RANKUP"


def generate_secret(nbytes: int = 20) -> str:
    return base64.b32encode(secrets.token_bytes(nbytes)).decode("ascii").rstrip("=")


def _decode_secret(secret: str) -> bytes:
    s = secret.strip().replace(" ", "").upper()
    s += "=" * (-len(s) % 8)
    return base64.b32decode(s)


def hotp(secret: str, counter: int) -> str:
    digest = hmac.new(_decode_secret(secret), struct.pack(">Q", counter), hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code = (struct.unpack(">I", digest[offset : offset + 4])[0] & 0x7FFFFFFF) % (10**DIGITS)
    return str(code).zfill(DIGITS)


def totp(secret: str, at: float | None = None) -> str:
    t = time.time() if at is None else at
    return hotp(secret, int(t // STEP_SECONDS))


def verify_totp(secret: str, code: str, at: float | None = None, window: int = WINDOW) -> bool:
    code = (code or "").strip().replace(" ", "")
    if len(code) != DIGITS or not code.isdigit():
        return False
    t = time.time() if at is None else at
    counter = int(t // STEP_SECONDS)
    return any(
        hmac.compare_digest(hotp(secret, counter + drift), code)
        for drift in range(-window, window + 1)
    )


def provisioning_uri(secret: str, account: str, issuer: str = ISSUER) -> str:
    label = quote(f"{issuer}:{account}")
    return f"otpauth://totp/{label}?secret={secret}&issuer={quote(issuer)}&algorithm=SHA1&digits={DIGITS}&period={STEP_SECONDS}"


# ---- Backup codes -----------------------------------------------------------------

def _normalize_backup(code: str) -> str:
    return (code or "").strip().upper().replace("-", "")


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(_normalize_backup(code).encode("utf-8")).hexdigest()


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> list[str]:
    """Return display-formatted codes (``XXXX-XXXX``)."""
    out = []
    for _ in range(count):
        raw = "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(8))
        out.append(f"{raw[:4]}-{raw[4:]}")
    return out


def consume_backup_code(hashes: list[str] | None, code: str) -> list[str] | None:
    """Return the remaining hashes when ``code`` matches one, else None."""
    if not hashes:
        return None
    h = hash_backup_code(code)
    if h not in hashes:
        return None
    return [x for x in hashes if x != h]


__all__ = [
    "generate_secret",
    "totp",
    "verify_totp",
    "provisioning_uri",
    "generate_backup_codes",
    "hash_backup_code",
    "consume_backup_code",
]
