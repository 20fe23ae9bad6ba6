"""hypeledger.core.exceptions

Errors are part of the interface.

Every failure here is scoped to a single event. Nothing is fatal to the process.
"""

from __future__ import annotations


class HypeLedgerError(Exception):
    """Base exception for hypeledger.

    ``code`` is a stable dotted identifier surfaced to callers (API bodies, results).
    """

    code = "hypeledger.error"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class ConfigError(HypeLedgerError):
    """Configuration is missing, invalid, or inconsistent."""

    code = "config.invalid"


class LedgerError(HypeLedgerError):
    """Ledger storage failures: schema, IO, integrity, or invariants."""

    code = "ledger.error"


class ValidationError(HypeLedgerError):
    """Malformed event. Discarded and surfaced to the caller."""

    code = "event.invalid"


class DuplicateEvent(HypeLedgerError):
    """Idempotency key already applied. Treated as a no-op success."""

    code = "click.duplicate"


class DuplicateParticipation(ValidationError):
    """Participation is write-once per (user, drop)."""

    code = "participation.duplicate"


class DropNotFound(ValidationError):
    code = "drop.not_found"


class DropClosed(HypeLedgerError):
    """Event references a drop outside its active window."""

    code = "drop.closed"


class EntryNotFound(LedgerError):
    """No ledger entry for (user, drop). Clicks require a prior participation."""

    code = "ledger.entry_not_found"


class ConcurrencyConflict(LedgerError):
    """Ledger apply lost a race at the storage layer. Retried internally."""

    code = "ledger.conflict"


class UnderReview(HypeLedgerError):
    """Anti-gaming flag. The event is counted; the pair is excluded from winners."""

    code = "review.flagged"


class DedupeConflictError(LedgerError):
    """Deduplication key reused with a different payload."""

    code = "journal.dedupe_conflict"
