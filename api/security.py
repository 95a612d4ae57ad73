"""
Security helpers for hashing and fingerprinting passwords and login codes.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

import bcrypt

LOGIN_CODE_PATTERN = re.compile(r"[0-9]{6}")
DEFAULT_ROUNDS = 10
# bcrypt only looks at the first 72 bytes and refuses anything longer.
MAX_SECRET_BYTES = 72


class MissingHash(Exception):
    """Raised when verification is attempted without a stored hash."""


def is_login_code(code: str) -> bool:
    return bool(LOGIN_CODE_PATTERN.fullmatch(code))


@dataclass(frozen=True)
class SecretHasher:
    """
    bcrypt wrapper used for one-way storage of passwords and login codes.
    Every hash embeds its own random salt, so two hashes of the same secret differ.
    """

    rounds: int = DEFAULT_ROUNDS

    def hash(self, secret: str) -> str:
        hashed = bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds))
        return hashed.decode("utf-8")

    def verify(self, secret: str, secret_hash: str | None) -> bool:
        if secret_hash is None:
            raise MissingHash("A stored hash is required for verification.")
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), secret_hash.encode("utf-8"))
        except ValueError:
            return False


def fingerprint(code: str, salt: str) -> str:
    """
    A deterministic salted SHA256 fingerprint so a login code can be looked up
    by equality without persisting the raw code.
    """
    return hashlib.sha256(f"{code}:{salt}".encode("utf-8")).hexdigest()


def is_hashable(secret: str) -> bool:
    return 0 < len(secret.encode("utf-8")) <= MAX_SECRET_BYTES
