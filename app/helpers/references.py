# app/helpers/references.py
import secrets
import time


def generate_reference(prefix: str, random_chars: int = 6) -> str:
    """Human-readable unique reference, e.g. RXM1A2B3C4F09A1B."""
    stamp = _base36(int(time.time() * 1000))
    return f"{prefix}{stamp}{secrets.token_hex(random_chars)[:random_chars]}".upper()


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
    return out or "0"


def prescription_number() -> str:
    return generate_reference("RX")


def order_number() -> str:
    return generate_reference("ORD")
