#!/usr/bin/env python3
"""
otp_core.py — Core library for SmartDrop access codes (TOTP, RFC 6238).

Goals:
- Pure functions only, used directly by the CLI, the scheduler and the REST API.
- No argparse / CLI loop here; see otp_cli.py.
- Every byte-level step is explicit: Base32 decode, HMAC-SHA1 key padding,
  inner/outer pad XOR, dynamic truncation.

Security notes:
- The shared secret is the only root of trust. Keep it in memory, never log it
  in full (use mask_secret()).
- Fixed parameters: HMAC-SHA1, 30 second time step. Only the code length is
  configurable per deployment.
"""

import hashlib
import hmac
import math
import struct
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .errors import ClockUnavailable, InvalidSecretFormat

# --- Config / constants ----------------------------------------------------
DEFAULT_DIGITS = 6          # standard: 6 digits
TIME_STEP = 30              # TOTP step (seconds), fixed for this system
MAX_DIGITS = 10             # a 31-bit truncated value never has more than 10 digits
MAX_COUNTER = 0xFFFFFFFFFFFFFFFF  # moving factor is an unsigned 64-bit integer
BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
SHA1_BLOCK_SIZE = 64
SHA1_DIGEST_SIZE = 20
INNER_PAD = 0x36
OUTER_PAD = 0x5C

Secret = Union[bytes, bytearray, str]


@dataclass(frozen=True)
class AccessCode:
    """A generated code together with the window it belongs to."""

    code: str
    expires_at: int
    counter: int

    def seconds_remaining(self, now: float) -> int:
        """Seconds until expires_at, clamped to 0."""
        return max(0, self.expires_at - int(math.floor(now)))


# --- Base32 ----------------------------------------------------------------
def base32_decode(encoded: str) -> bytes:
    """
    Decode a human-typed Base32 secret into raw key bytes.

    - Uppercase, then drop every character outside A-Z2-7 ('=' padding,
      spaces and dashes are discarded, not validated).
    - Each kept character contributes its 5-bit index, MSB first.
    - One byte is emitted per complete run of 8 bits; trailing bits
      (fewer than 8) are dropped silently.

    Arguments:
        encoded: Base32 text, e.g. "JBSW Y3DP EHPK 3PXP"

    Returns:
        bytes: decoded key

    Raises:
        InvalidSecretFormat: no alphabet characters, or fewer than 8 bits
            of key material.
    """
    cleaned = [ch for ch in encoded.upper() if ch in BASE32_ALPHABET]
    if not cleaned:
        raise InvalidSecretFormat("Secret contains no Base32 characters")

    buffer = 0
    bits = 0
    out = bytearray()
    for ch in cleaned:
        buffer = (buffer << 5) | BASE32_ALPHABET.index(ch)
        bits += 5
        if bits >= 8:
            bits -= 8
            out.append((buffer >> bits) & 0xFF)
            buffer &= (1 << bits) - 1

    if not out:
        raise InvalidSecretFormat("Secret decodes to zero bytes")
    return bytes(out)


def normalize_secret(secret: Secret) -> bytes:
    """
    Turn either raw key bytes or Base32 text into key bytes.

    Raises:
        InvalidSecretFormat: empty bytes, or Base32 text that decodes to nothing.
        TypeError: for any other type.
    """
    if isinstance(secret, (bytes, bytearray)):
        if not secret:
            raise InvalidSecretFormat("Secret is empty")
        return bytes(secret)
    if isinstance(secret, str):
        return base32_decode(secret)
    raise TypeError(f"secret must be bytes or str, not {type(secret).__name__}")


def mask_secret(secret: Optional[str]) -> str:
    """Loggable form of a secret: first 4 characters and the length."""
    if not secret:
        return "<empty>"
    return f"{secret[:4]}...({len(secret)} chars)"


# --- HMAC-SHA1 -------------------------------------------------------------
def hmac_sha1(key: bytes, message: bytes) -> bytes:
    """
    HMAC-SHA1 (RFC 2104) built directly on hashlib.sha1.

    Steps:
    1. key longer than 64 bytes -> SHA1(key) (20 bytes)
    2. right zero-pad key to 64 bytes
    3. inner = SHA1((key ^ 0x36...) || message)
    4. tag   = SHA1((key ^ 0x5c...) || inner)

    Returns:
        bytes: 20-byte tag
    """
    if len(key) > SHA1_BLOCK_SIZE:
        key = hashlib.sha1(key).digest()
    key = key.ljust(SHA1_BLOCK_SIZE, b"\x00")

    ipad = bytes(b ^ INNER_PAD for b in key)
    opad = bytes(b ^ OUTER_PAD for b in key)

    inner = hashlib.sha1(ipad + message).digest()
    return hashlib.sha1(opad + inner).digest()


# --- RFC helpers -----------------------------------------------------------
def int_to_bytes(i: int) -> bytes:
    """
    8-byte big-endian counter, as RFC 4226 requires.

    Example: int_to_bytes(1) -> b'\\x00\\x00\\x00\\x00\\x00\\x00\\x00\\x01'
    """
    if not 0 <= i <= MAX_COUNTER:
        raise ValueError(f"counter out of range: {i}")
    return struct.pack(">Q", i)


def dynamic_truncate(hmac_digest: bytes) -> int:
    """
    RFC 4226 dynamic truncation.

    - offset = last_byte & 0x0F
    - 4 bytes from offset, MSB of the first one cleared (0x7F)
    - returns a 31-bit unsigned integer
    """
    if len(hmac_digest) != SHA1_DIGEST_SIZE:
        raise ValueError(f"expected a {SHA1_DIGEST_SIZE}-byte digest, got {len(hmac_digest)}")
    offset = hmac_digest[-1] & 0x0F
    code = (
        ((hmac_digest[offset] & 0x7F) << 24)
        | ((hmac_digest[offset + 1] & 0xFF) << 16)
        | ((hmac_digest[offset + 2] & 0xFF) << 8)
        | (hmac_digest[offset + 3] & 0xFF)
    )
    return code


def _check_digits(digits: int) -> None:
    if not 1 <= digits <= MAX_DIGITS:
        raise ValueError(f"digits must be between 1 and {MAX_DIGITS}")


def hotp(key: bytes, counter: int, digits: int = DEFAULT_DIGITS) -> str:
    """
    HOTP value for one counter (RFC 4226).

    Arguments:
        key: raw key bytes (already decoded)
        counter: non-negative counter
        digits: code length

    Returns:
        str: zero-padded code with exactly `digits` characters
    """
    _check_digits(digits)
    digest = hmac_sha1(key, int_to_bytes(counter))
    dbc = dynamic_truncate(digest)
    return str(dbc % (10 ** digits)).zfill(digits)


# --- TOTP ------------------------------------------------------------------
def time_counter(timestamp: float) -> int:
    """
    floor(timestamp / 30).

    Raises ValueError for negative or non-finite time, or when the counter
    does not fit in 64 bits.
    """
    if not math.isfinite(timestamp) or timestamp < 0:
        raise ValueError("timestamp must be a finite, non-negative number of seconds")
    counter = int(timestamp // TIME_STEP)
    if counter > MAX_COUNTER:
        raise ValueError("timestamp too large for a 64-bit counter")
    return counter


def seconds_remaining(now: float) -> int:
    """Countdown shown next to the code: 30 - (floor(now) mod 30), in 1..30."""
    return TIME_STEP - (int(math.floor(now)) % TIME_STEP)


def read_clock(clock: Callable[[], float] = time.time) -> float:
    """
    Read wall-clock seconds since the epoch.

    Raises:
        ClockUnavailable: the clock raised OSError or returned something
            that is not a finite non-negative number.
    """
    try:
        now = clock()
    except OSError as e:
        raise ClockUnavailable("Wall clock could not be read") from e
    if (now is None or not isinstance(now, (int, float)) or not math.isfinite(now) or now < 0
            or now // TIME_STEP > MAX_COUNTER):
        raise ClockUnavailable(f"Wall clock returned an unusable value: {now!r}")
    return now


def generate_code(
    secret: Secret,
    at: Optional[float] = None,
    digits: int = DEFAULT_DIGITS,
    clock: Callable[[], float] = time.time,
) -> AccessCode:
    """
    Generate the access code valid at `at` (RFC 6238, SHA-1, 30s step).

    Arguments:
        secret: raw key bytes or Base32 text
        at: Unix time in seconds (None -> read `clock`)
        digits: code length (default 6)
        clock: wall clock used when `at` is None

    Returns:
        AccessCode(code, expires_at, counter) with
        expires_at = (counter + 1) * 30

    Raises:
        InvalidSecretFormat: secret has no usable key material
        ClockUnavailable: `at` is None and the clock cannot be read
        ValueError: negative timestamp or digits out of range
    """
    key = normalize_secret(secret)
    if at is None:
        at = read_clock(clock)
    counter = time_counter(at)
    code = hotp(key, counter, digits)
    return AccessCode(code=code, expires_at=(counter + 1) * TIME_STEP, counter=counter)


def verify_code(
    secret: Secret,
    code: str,
    at: Optional[float] = None,
    digits: int = DEFAULT_DIGITS,
    window: int = 1,
    clock: Callable[[], float] = time.time,
) -> bool:
    """
    Check a code typed at the box against counters counter-window..counter+window.

    The comparison is constant time (hmac.compare_digest). A window of 1
    tolerates one step of clock drift on either side.
    """
    if window < 0:
        raise ValueError("window must be non-negative")
    key = normalize_secret(secret)
    if at is None:
        at = read_clock(clock)
    candidate = str(code).strip()
    counter = time_counter(at)
    for offset in range(-window, window + 1):
        test_counter = counter + offset
        if not 0 <= test_counter <= MAX_COUNTER:
            continue
        expected = hotp(key, test_counter, digits)
        if hmac.compare_digest(expected.encode("ascii"), candidate.encode("utf-8")):
            return True
    return False
