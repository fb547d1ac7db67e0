"""
Typed errors raised by the unit accounting engine.

Every error is raised *before* any engine state is touched, so callers can
treat a raised error as "nothing happened".  Each error knows how it should
be presented:

- ``systemic = False``: the caller supplied something invalid; the message
  is safe to show next to the form field that produced it.
- ``systemic = True``: the fund itself is in a state the caller cannot fix
  (no price established, corrupted unit totals); show a generic
  "contact an administrator" message and alert an operator.
"""

from decimal import Decimal
from typing import Any, Optional

CONTACT_ADMIN_MESSAGE = (
    "The fund ledger is not in a state that allows this operation. "
    "Please contact a club administrator."
)


class LedgerError(Exception):
    """Base class for every engine error."""

    systemic = False
    # Position of the failing entry when raised from a replayed log.
    entry_index: Optional[int] = None

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def code(self) -> str:
        return type(self).__name__

    @property
    def user_message(self) -> str:
        """Message suitable for end users."""
        if self.systemic:
            return CONTACT_ADMIN_MESSAGE
        return self.message


class InvalidAmount(LedgerError):
    """A cash, unit or valuation amount is non-positive or malformed."""

    def __init__(self, field: str, value: Any, reason: str = "must be greater than zero"):
        self.field = field
        self.value = value
        super().__init__(f"{field} {reason} (got {value})")


class UndefinedPrice(LedgerError):
    """No unit price exists yet: the fund has no units and was never seeded."""

    systemic = True

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"Cannot {operation}: the fund has no units outstanding and no seed "
            f"price has been established"
        )


class InsufficientUnits(LedgerError):
    """The operation would drive a member's (or the fund's) units negative."""

    def __init__(self, member_id: Any, requested: Decimal, available: Decimal):
        self.member_id = member_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Member {member_id} holds {available} units; "
            f"{requested} units were requested"
        )


class InsufficientFundValue(LedgerError):
    """A withdrawal asks for more cash than the fund is worth."""

    def __init__(self, requested: Decimal, available: Decimal):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Withdrawal of {requested} exceeds the total fund value of {available}"
        )


class InvariantViolation(LedgerError):
    """
    Member units no longer sum to the fund's units outstanding.

    Never caused by engine operations on a consistent ledger; it indicates a
    bug or an out-of-band write (e.g. a bulk import that bypassed the engine).
    """

    systemic = True

    def __init__(self, total_units: Decimal, member_units: Decimal, detail: Optional[str] = None):
        self.total_units = total_units
        self.member_units = member_units
        message = (
            f"Ledger invariant violated: members hold {member_units} units but the "
            f"fund reports {total_units} units outstanding"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class PriceAlreadyEstablished(LedgerError):
    """A seed price was supplied for a fund that already has units outstanding."""

    def __init__(self, current_price: Optional[Decimal]):
        self.current_price = current_price
        super().__init__(
            f"The fund already has units outstanding at a price of {current_price}; "
            f"use a revaluation to change the price"
        )

