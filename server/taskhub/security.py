from __future__ import annotations

import base64
import hashlib
import hmac
import os
from typing import Optional, Tuple


_ALGO = "sha256"
_ITERATIONS = 210_000
_PREFIX = "pbkdf2_sha256"


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _split_hash(stored: str) -> Optional[Tuple[int, bytes, bytes]]:
    parts = str(stored or "").strip().split("$")
    if len(parts) != 4 or parts[0] != _PREFIX:
        return None
    try:
        return int(parts[1]), base64.b64decode(parts[2]), base64.b64decode(parts[3])
    except (ValueError, TypeError):
        return None


def hash_password(password: str, *, iterations: int = _ITERATIONS) -> str:
    plain = str(password or "")
    if not plain.strip():
        raise ValueError("Senha vazia nao permitida")
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac(_ALGO, plain.encode("utf-8"), salt, iterations)
    return f"{_PREFIX}${iterations}${_b64(salt)}${_b64(digest)}"


def verify_password(password: str, stored: str) -> bool:
    """Usuario sem hash cadastrado (convite pendente) nunca autentica."""
    parsed = _split_hash(stored)
    if parsed is None:
        return False
    iterations, salt, expected = parsed
    computed = hashlib.pbkdf2_hmac(_ALGO, str(password or "").encode("utf-8"), salt, iterations)
    return hmac.compare_digest(expected, computed)


def needs_rehash(stored: str) -> bool:
    parsed = _split_hash(stored)
    return parsed is None or parsed[0] < _ITERATIONS
