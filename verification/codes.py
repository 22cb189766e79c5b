"""
verification/codes.py -- Verification code generation and hashing.

Codes:
  generate_code() draws each code with secrets.randbelow(10**length), which
  is uniform over the whole code space, then zero-pads to a fixed width.
  A 6-digit code therefore has exactly 10**6 equally likely values, including
  ones with leading zeros.

Storage:
  Codes are short-lived but low-entropy, so they are stored as bcrypt hashes,
  the same primitive used for passwords. A database leak does not hand out
  usable codes, and comparison goes through bcrypt.checkpw rather than
  plaintext equality.

Limiter keys:
  hash_contact() is HMAC-SHA256(key, contact). Rate-limit storage (possibly a
  shared Redis) never sees raw email addresses or phone numbers.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

import bcrypt

DEFAULT_CODE_LENGTH = 6


def generate_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    """Return a uniformly random decimal code of exactly `length` digits."""
    if length < 1:
        raise ValueError("Code length must be at least 1.")
    return str(secrets.randbelow(10**length)).zfill(length)


def hash_code(code: str) -> str:
    """Return a bcrypt hash of the code for storage."""
    return bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_code(code: str, code_hash: str) -> bool:
    """Return True if `code` matches `code_hash`. Never raises."""
    try:
        return bcrypt.checkpw(code.encode("utf-8"), code_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def hash_contact(contact: str, key: str = "") -> str:
    """One-way digest of a contact for use in rate-limit keys.

    With a key this is HMAC-SHA256 (keyed by SECRET_KEY in the app); without
    one it falls back to plain SHA-256.
    """
    if key:
        return hmac.new(key.encode(), contact.encode("utf-8"), hashlib.sha256).hexdigest()
    return hashlib.sha256(contact.encode("utf-8")).hexdigest()


# Timing equalization for the "no record" path. Checking a submitted code
# against this dummy costs the same as checking against a real hash, so the
# response time does not reveal whether a record exists.
_DUMMY_CODE_HASH: str = hash_code("0" * DEFAULT_CODE_LENGTH)


def burn_check(code: str) -> None:
    """Run one bcrypt comparison against a dummy hash and discard the result."""
    check_code(code, _DUMMY_CODE_HASH)
