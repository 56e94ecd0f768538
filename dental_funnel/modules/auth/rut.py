"""Chilean RUT helpers: a numeric body plus a mod-11 check digit (0-9 or K)."""
import re

_STRIP = re.compile(r"[^0-9kK]")


def clean(raw: str | None) -> str:
    return _STRIP.sub("", raw or "").upper()


def compute_verifier(body: str) -> str:
    total = 0
    multiplier = 2
    for digit in reversed(body):
        total += int(digit) * multiplier
        multiplier = 2 if multiplier == 7 else multiplier + 1
    remainder = 11 - (total % 11)
    if remainder == 11:
        return "0"
    if remainder == 10:
        return "K"
    return str(remainder)


def is_valid(raw: str | None) -> bool:
    value = clean(raw)
    if len(value) not in (8, 9):
        return False
    body, verifier = value[:-1], value[-1]
    if not body.isdigit():
        return False
    return compute_verifier(body) == verifier


def normalize(raw: str) -> str:
    """Canonical `body-V` form, e.g. 12.345.678-5 -> 12345678-5."""
    value = clean(raw)
    return f"{value[:-1]}-{value[-1]}"
