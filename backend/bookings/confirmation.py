"""Human-readable booking confirmation numbers."""

from __future__ import annotations

import random
import re
import secrets
import string
import time
from typing import Optional

CONFIRMATION_PREFIX = "CV"
CONFIRMATION_NUMBER_RE = re.compile(r"^CV\d{6}[A-Z0-9]{4}$")
_BASE36_ALPHABET = string.digits + string.ascii_uppercase
_SYSTEM_RANDOM = secrets.SystemRandom()


def generate_confirmation_number(
    *,
    now_ms: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Return ``CV`` + the low six digits of the epoch milliseconds + four
    random base-36 characters, e.g. ``CV482913K7QZ``.

    Numbers are only probably unique; the reservation store enforces
    uniqueness and asks for a new one on collision.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    chooser = rng or _SYSTEM_RANDOM
    suffix = "".join(chooser.choice(_BASE36_ALPHABET) for _ in range(4))
    return f"{CONFIRMATION_PREFIX}{now_ms % 1_000_000:06d}{suffix}"


def is_confirmation_number(value: str) -> bool:
    return bool(CONFIRMATION_NUMBER_RE.match(value or ""))
