"""Error types raised by the decrypted-file provider.

Each type also derives from the builtin exception a caller would naturally
catch (``FileNotFoundError``, ``ValueError``, ``OSError``), so code that does
not know about this package still handles them sensibly.
"""
from __future__ import annotations


class ProviderError(Exception):
    """Base class for provider errors."""


class ContentNotFoundError(ProviderError, FileNotFoundError):
    """The referenced file no longer exists (expired, swept or never created)."""


class ContentUnavailableError(ProviderError, OSError):
    """The content exists but cannot be served right now (e.g. pipe setup failed)."""


class MalformedReferenceError(ProviderError, ValueError):
    """A reference is structurally invalid or is missing a mandatory tag."""


class UnsupportedOperationError(ProviderError):
    """The operation is not offered through the read-only consumer interface."""


class StreamDecodeError(ProviderError, OSError):
    """Encoded content turned out to be malformed while it was being decoded."""
