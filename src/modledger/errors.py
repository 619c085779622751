"""
Error taxonomy for the moderation ledger.

Expected conditions (bad input, unknown ids, lost races) are carried inside
a :class:`~modledger.datatypes.moderation_datatypes.ModerationResult` rather
than raised across the public API. Only an unreachable store propagates as
an exception so the caller can pick its own retry and backoff policy.
"""

from __future__ import annotations


class ModerationError(Exception):
    """Base class for all ledger errors."""


class ValidationError(ModerationError):
    """Input was rejected before anything was written. Never retried automatically."""


class NotFoundError(ModerationError):
    """The requested record or target does not exist."""


class ConflictError(ModerationError):
    """A concurrent writer changed the record first; re-fetch and retry the mutation."""


class StorageError(ModerationError):
    """The store failed or timed out."""


class AlreadyInactiveError(ModerationError):
    """The sanction is no longer in effect (expired, or an instant action)."""
