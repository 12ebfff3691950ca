"""
core package
============

Access codes for SmartDrop parcel boxes: TOTP (RFC 6238) built by hand on
hashlib.sha1, plus the session/scheduler that keeps the current code fresh.

──────────────────────────────────────────────
Core algorithm
──────────────────────────────────────────────
- Base32 decode: uppercase, keep only A-Z2-7, 5 bits per character,
  one byte per full 8 bits, trailing bits dropped.
- HMAC-SHA1: key > 64 bytes -> SHA1(key); zero-pad to 64 bytes;
  SHA1((K ^ 0x36) || msg), then SHA1((K ^ 0x5c) || inner).
- TOTP: counter = floor(now / 30), 8-byte big-endian message,
  dynamic truncation (offset = last byte & 0x0F), mod 10^digits.
  The code expires at (counter + 1) * 30.

──────────────────────────────────────────────
Quick example
──────────────────────────────────────────────
>>> from core import generate_code
>>> generate_code("GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ", at=59, digits=8).code
'94287082'
"""
from .errors import ClockUnavailable, InvalidSecretFormat, SmartDropError
from .otp_core import (
    AccessCode,
    base32_decode,
    generate_code,
    hmac_sha1,
    seconds_remaining,
    verify_code,
)
from .scheduler import CodeSession, CountdownScheduler, GenerationOutcome

__all__ = [
    "AccessCode",
    "ClockUnavailable",
    "CodeSession",
    "CountdownScheduler",
    "GenerationOutcome",
    "InvalidSecretFormat",
    "SmartDropError",
    "base32_decode",
    "generate_code",
    "hmac_sha1",
    "seconds_remaining",
    "verify_code",
]
