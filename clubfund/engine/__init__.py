"""
Unit accounting engine.

Pure, synchronous pricing rules for the club fund.  Nothing in this package
performs I/O; the service layer loads a snapshot, runs one operation and
persists the result.
"""

from clubfund.engine.errors import (
    CONTACT_ADMIN_MESSAGE,
    InsufficientFundValue,
    InsufficientUnits,
    InvalidAmount,
    InvariantViolation,
    LedgerError,
    PriceAlreadyEstablished,
    UndefinedPrice,
)
from clubfund.engine.unit_accounting import (
    CASH_QUANTUM,
    PCT_QUANTUM,
    PRICE_QUANTUM,
    PRICE_TOLERANCE,
    UNIT_QUANTUM,
    VALUE_QUANTUM,
    AdjustmentResult,
    DepositResult,
    FundState,
    LedgerEntry,
    MemberPosition,
    Reconciliation,
    RevaluationResult,
    Transaction,
    TransactionType,
    UnitAccountingEngine,
    WithdrawalResult,
    round_cash,
    to_cash,
    to_decimal,
    to_price,
    to_units,
    to_value,
)

__all__ = [
    # Errors
    "CONTACT_ADMIN_MESSAGE",
    "LedgerError",
    "InvalidAmount",
    "UndefinedPrice",
    "InsufficientUnits",
    "InsufficientFundValue",
    "InvariantViolation",
    "PriceAlreadyEstablished",
    # Precision
    "CASH_QUANTUM",
    "PCT_QUANTUM",
    "UNIT_QUANTUM",
    "PRICE_QUANTUM",
    "VALUE_QUANTUM",
    "PRICE_TOLERANCE",
    "to_decimal",
    "round_cash",
    "to_cash",
    "to_price",
    "to_units",
    "to_value",
    # Types
    "FundState",
    "MemberPosition",
    "Transaction",
    "TransactionType",
    "LedgerEntry",
    "Reconciliation",
    "DepositResult",
    "WithdrawalResult",
    "AdjustmentResult",
    "RevaluationResult",
    # Engine
    "UnitAccountingEngine",
]
