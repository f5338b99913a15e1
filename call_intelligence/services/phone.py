"""Swedish phone number helpers.

Numbers reach us as E.164 (+46732000004), local 0-prefixed (0732000004),
country code without plus (46732000004), international dialing
(0046732000004) and with arbitrary spacing (073 - 200 00 04).
"""
import re
from typing import List, Optional

_NON_DIGITS = re.compile(r"[^0-9]")


def _digits(phone: str) -> str:
    return _NON_DIGITS.sub("", phone)


def _is_local(digits: str) -> bool:
    return digits.startswith("0") and 9 <= len(digits) <= 11


def normalize_to_e164(phone: Optional[str]) -> Optional[str]:
    """Normalize a Swedish number to +46...; other numbers come back as bare digits."""
    if not phone:
        return None

    digits = _digits(phone)
    if not digits:
        return None

    if phone.strip().startswith("+"):
        return "+" + digits
    if digits.startswith("0046") and len(digits) > 11:
        return "+46" + digits[4:]
    if digits.startswith("46") and len(digits) > 9:
        return "+" + digits
    if _is_local(digits):
        return "+46" + digits[1:]
    return digits


def phone_variants(phone: Optional[str]) -> List[str]:
    """
    All formats a CRM contact might store this number in.

    Order is preserved and duplicates are removed, so the caller can use the
    list directly as search filter values.
    """
    if not phone:
        return []

    digits = _digits(phone)
    variants = [phone, digits]
    local = ""

    if digits.startswith("0046") and len(digits) > 11:
        local = "0" + digits[4:]
        variants += [local, "+46" + digits[4:], "46" + digits[4:]]
    elif digits.startswith("46") and len(digits) > 9:
        local = "0" + digits[2:]
        variants += [local, "+46" + digits[2:], "0046" + digits[2:]]
    elif _is_local(digits):
        local = digits
        variants += ["+46" + digits[1:], "46" + digits[1:], "0046" + digits[1:]]

    if len(local) == 10:
        p1, p2, p3, p4 = local[:3], local[3:6], local[6:8], local[8:]
        variants += [
            f"{p1} {p2} {p3} {p4}",
            f"{p1} - {p2} {p3} {p4}",
            f"{p1}-{p2} {p3} {p4}",
            f"{p1}-{p2}{p3}{p4}",
            f"{p1} {p2}{p3}{p4}",
        ]

    return [v for v in dict.fromkeys(variants) if v]
