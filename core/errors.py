"""
errors.py — Exception types raised by the SmartDrop core.

- InvalidSecretFormat: the Base32 secret decodes to no bytes at all.
- ClockUnavailable: the system clock could not be read.
"""


class SmartDropError(Exception):
    """Base class for every error raised by the SmartDrop core."""


class InvalidSecretFormat(SmartDropError, ValueError):
    """The configured secret yields no usable key material."""


class ClockUnavailable(SmartDropError):
    """The wall clock could not be read; code generation cannot proceed."""
