"""Identifier generation for sessions and players."""

import random
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase


def _random_token(length: int = 11) -> str:
    return "".join(random.choice(_ALPHABET) for _ in range(length))


def generate_id(prefix: str = "session") -> str:
    """Return ``"<prefix>-<random>-<epoch millis>"``.

    Uniqueness is probabilistic; no collision check is performed.
    """
    return f"{prefix}-{_random_token()}-{int(time.time() * 1000)}"


__all__ = ["generate_id"]
