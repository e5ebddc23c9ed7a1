"""Payment-side domain errors."""

from __future__ import annotations


class ReconciliationRequired(Exception):
    """A succeeded payment cannot be turned into a booking and needs a refund or review."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class InvalidEscrowTransition(Exception):
    """The escrow or deposit status was not in the expected source state."""

    def __init__(self, field: str, expected: tuple[str, ...], actual: str | None):
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{field} must be one of {', '.join(expected)} (was {actual or 'unset'})."
        )
