"""Signature helpers shared by the inbound webhooks."""
import hashlib
import hmac
import time
from typing import Optional, Union

SIGNATURE_TOLERANCE_SECONDS = 300


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def safe_compare(a: Optional[Union[str, bytes]], b: Optional[Union[str, bytes]]) -> bool:
    """Constant-time equality; a missing value never matches."""
    if not a or not b:
        return False
    return hmac.compare_digest(_to_bytes(a), _to_bytes(b))


def hmac_sha256_hex(secret: str, message: Union[str, bytes]) -> str:
    """Hex HMAC-SHA256 of message keyed with secret."""
    return hmac.new(_to_bytes(secret), _to_bytes(message), hashlib.sha256).hexdigest()


def timestamp_is_fresh(
    timestamp: Optional[str],
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: Optional[float] = None,
    milliseconds: bool = False,
) -> bool:
    """Whether a unix timestamp header is within tolerance of now."""
    try:
        value = int(timestamp)
    except (TypeError, ValueError):
        return False
    if milliseconds:
        value = value / 1000
    current = time.time() if now is None else now
    return abs(current - value) <= tolerance
