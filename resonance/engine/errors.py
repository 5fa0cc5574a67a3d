"""
resonance.engine.errors — Domain Error Types
=============================================

Two error kinds cross the service boundary:

* :class:`NotFoundError` — an operation that *requires* an existing record
  (e.g. an admin XP adjustment) was pointed at one that does not exist.
  Read paths never raise it; they fall back to defaults.
* :class:`InvalidInputError` — a write was rejected before touching the
  store (bad settings values, unknown moderation state kind, missing actor).

Both subclass the builtin they specialise, so callers that only care about
``LookupError`` / ``ValueError`` keep working.
"""

from __future__ import annotations


class NotFoundError(LookupError):
    """A required record does not exist."""


class InvalidInputError(ValueError):
    """Input failed validation; nothing was written."""
