"""Identifier formats shared by payments and licensing."""

import secrets
import string
import time

_BASE36 = string.digits + string.ascii_uppercase


def base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def timestamp_token() -> str:
    """Current time in milliseconds, base36, upper case."""
    return base36(int(time.time() * 1000))


def hex_token(length: int) -> str:
    return secrets.token_hex((length + 1) // 2)[:length].upper()
