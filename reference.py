"""
Booking references.

``CAR`` + last six digits of the millisecond clock + six random
upper-case alphanumerics, e.g. ``CAR482913K7Q2ZP``. Uniqueness is
probabilistic; the unique index on ``booking_reference`` is the backstop.
"""
import secrets
import string
import time
from typing import Callable, Optional

from config import get_settings

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
TIMESTAMP_DIGITS = 6
RANDOM_LENGTH = 6


def generate_booking_reference(
    prefix: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> str:
    prefix = prefix if prefix is not None else get_settings().REFERENCE_PREFIX
    timestamp = str(int(clock() * 1000))[-TIMESTAMP_DIGITS:].rjust(TIMESTAMP_DIGITS, "0")
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(RANDOM_LENGTH))
    return f"{prefix}{timestamp}{suffix}"


def is_booking_reference(value: str, prefix: Optional[str] = None) -> bool:
    prefix = prefix if prefix is not None else get_settings().REFERENCE_PREFIX
    body = value[len(prefix):]
    return (
        value.startswith(prefix)
        and len(body) == TIMESTAMP_DIGITS + RANDOM_LENGTH
        and body[:TIMESTAMP_DIGITS].isdigit()
        and all(ch in REFERENCE_ALPHABET for ch in body[TIMESTAMP_DIGITS:])
    )
