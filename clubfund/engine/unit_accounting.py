"""
Unit accounting engine: the pricing rules of the club's pooled fund.

The fund is divided into *units*.  At any moment::

    unit_price = total_value / total_units

Cash entering or leaving the fund is converted to units at the price
immediately *before* the transaction, so a deposit or withdrawal never moves
the price and never dilutes the other members.  The only operation allowed to
change the price is :meth:`UnitAccountingEngine.revalue`, which records a
change in the market value of the pooled assets and moves every member's
value proportionally.

Numeric model:
    All quantities are :class:`~decimal.Decimal`.  Cash supplied by callers
    must be whole cents.  Units, fund value and cost basis are carried at 12
    decimal places, so rounding a deposit or withdrawal moves the price by at
    most ``price * 5e-13 / units outstanding``.  Recorded prices use 8
    places.  Intermediate arithmetic runs in a private 50-digit context, so
    the process-wide decimal context is never touched.  Units are computed as
    ``cash * total_units / total_value`` rather than through a rounded price,
    which makes a deposit followed by a withdrawal of the same amount restore
    the ledger exactly.

Atomicity:
    Every operation validates its inputs, builds the candidate state, checks
    the ledger invariants on that candidate and only then swaps it in.  A
    raised :class:`~clubfund.engine.errors.LedgerError` therefore always
    means "nothing changed".

The engine performs no I/O and holds no locks.  Callers that share one fund
between concurrent requests must serialise operations themselves (see
``clubfund.services.ledger_service``).
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import (
    ROUND_HALF_EVEN,
    Context,
    Decimal,
    InvalidOperation,
    localcontext,
)
from enum import Enum
from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple

from clubfund.engine.errors import (
    InsufficientFundValue,
    InsufficientUnits,
    InvalidAmount,
    InvariantViolation,
    LedgerError,
    PriceAlreadyEstablished,
    UndefinedPrice,
)

# ── Precision ──

CASH_QUANTUM = Decimal("0.01")
UNIT_QUANTUM = Decimal("0.000000000001")
PRICE_QUANTUM = Decimal("0.00000001")
VALUE_QUANTUM = Decimal("0.000000000001")
PCT_QUANTUM = Decimal("0.0001")

# Deposits and withdrawals keep the price within this bound while the price is
# below 20,000 times the units outstanding.
PRICE_TOLERANCE = Decimal("1e-8")

_ZERO = Decimal("0")
_LEDGER_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)


def _quantize(value: Decimal, quantum: Decimal) -> Decimal:
    with localcontext(_LEDGER_CONTEXT):
        return value.quantize(quantum)


def to_decimal(value: Any, field: str) -> Decimal:
    """
    Convert user or database input into a finite ``Decimal``.

    Floats go through their shortest ``repr`` so ``0.1`` becomes
    ``Decimal("0.1")`` rather than its binary expansion.
    """
    if isinstance(value, bool):
        raise InvalidAmount(field, value, "must be a number")
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, float):
            result = Decimal(repr(value))
        elif isinstance(value, (int, str)):
            result = Decimal(value.strip() if isinstance(value, str) else value)
        else:
            raise InvalidAmount(field, value, "must be a number")
    except InvalidOperation:
        raise InvalidAmount(field, value, "must be a number")
    if not result.is_finite():
        raise InvalidAmount(field, value, "must be a finite number")
    return result


def _quantize_input(value: Any, field: str, quantum: Decimal) -> Decimal:
    try:
        return _quantize(to_decimal(value, field), quantum)
    except InvalidOperation:
        raise InvalidAmount(field, value, "is too large")


def to_cash(value: Any, field: str = "cash_amount") -> Decimal:
    """Convert to a cash amount, rejecting fractions of a cent."""
    cash = _quantize_input(value, field, CASH_QUANTUM)
    if cash != to_decimal(value, field):
        raise InvalidAmount(field, value, "has more than 2 decimal places")
    return cash


def round_cash(value: Decimal) -> Decimal:
    """Round a computed amount (a member's value, cost basis) to cents."""
    return _quantize(value, CASH_QUANTUM)


def to_units(value: Any, field: str = "units_delta") -> Decimal:
    """Convert to a unit quantity (12 decimal places)."""
    return _quantize_input(value, field, UNIT_QUANTUM)


def to_value(value: Any, field: str = "total_value") -> Decimal:
    """Convert to a fund value (12 decimal places)."""
    return _quantize_input(value, field, VALUE_QUANTUM)


def to_price(value: Any, field: str = "unit_price") -> Decimal:
    """Convert to a unit price (8 decimal places)."""
    return _quantize_input(value, field, PRICE_QUANTUM)


# ────────────────────────────────────────────────────────────────────────────
# Value objects
# ────────────────────────────────────────────────────────────────────────────


class TransactionType(str, Enum):
    """Kinds of ledger transaction."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    UNIT_ADJUSTMENT = "unit_adjustment"
    REVALUATION = "revaluation"


@dataclass(frozen=True)
class FundState:
    """Aggregate value and units of the fund."""

    total_value: Decimal = _ZERO
    total_units: Decimal = _ZERO
    seed_price: Optional[Decimal] = None

    @property
    def unit_price(self) -> Optional[Decimal]:
        """``total_value / total_units``, or ``None`` with no units outstanding."""
        if self.total_units <= 0:
            return None
        with localcontext(_LEDGER_CONTEXT):
            return self.total_value / self.total_units


@dataclass(frozen=True)
class MemberPosition:
    """One member's holding in the fund."""

    member_id: Hashable
    units_owned: Decimal = _ZERO
    total_contributed: Decimal = _ZERO

    @property
    def is_closed(self) -> bool:
        return self.units_owned == 0


@dataclass(frozen=True)
class Transaction:
    """
    Immutable ledger record.

    ``unit_price_at_transaction`` is the price *before* the transaction was
    applied.  ``value_after`` / ``units_after`` are the fund totals once it
    was applied.
    """

    tx_type: TransactionType
    member_id: Optional[Hashable]
    cash_amount: Optional[Decimal]
    units_delta: Decimal
    unit_price_at_transaction: Optional[Decimal]
    value_after: Decimal
    units_after: Decimal
    timestamp: datetime
    notes: str = ""


@dataclass(frozen=True)
class DepositResult:
    units_issued: Decimal
    new_unit_price: Decimal


@dataclass(frozen=True)
class WithdrawalResult:
    units_removed: Decimal
    new_unit_price: Optional[Decimal]
    cash_paid: Decimal


@dataclass(frozen=True)
class AdjustmentResult:
    cash_equivalent: Decimal
    new_unit_price: Optional[Decimal]


@dataclass(frozen=True)
class RevaluationResult:
    old_price: Decimal
    new_price: Decimal
    pct_change: Optional[Decimal]


@dataclass(frozen=True)
class Reconciliation:
    """Comparison of the fund's units outstanding with the members' holdings."""

    total_units: Decimal
    member_units: Decimal
    negative_positions: Tuple[Hashable, ...] = ()

    @property
    def difference(self) -> Decimal:
        return self.member_units - self.total_units

    @property
    def balanced(self) -> bool:
        return self.difference == 0 and not self.negative_positions


@dataclass(frozen=True)
class LedgerEntry:
    """One row of a transaction log to be replayed through the engine."""

    tx_type: TransactionType
    amount: Any
    member_id: Optional[Hashable] = None
    notes: str = ""
    timestamp: Optional[datetime] = None


# ────────────────────────────────────────────────────────────────────────────
# Engine
# ────────────────────────────────────────────────────────────────────────────


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UnitAccountingEngine:
    """
    In-memory unit ledger for a single fund.

    Holds a :class:`FundState`, the :class:`MemberPosition` of every member
    who has transacted, and the transactions applied through this instance.
    """

    def __init__(
        self,
        state: Optional[FundState] = None,
        positions: Iterable[MemberPosition] = (),
    ):
        self._state = state or FundState()
        self._positions: Dict[Hashable, MemberPosition] = {
            p.member_id: p for p in positions
        }
        self._transactions: List[Transaction] = []

    @classmethod
    def restore(
        cls, state: FundState, positions: Iterable[MemberPosition]
    ) -> "UnitAccountingEngine":
        """
        Rebuild an engine from a persisted snapshot.

        Raises :class:`InvariantViolation` if the snapshot is inconsistent,
        which happens when rows were written without going through the engine.
        """
        engine = cls(state, positions)
        engine.reconcile()
        return engine

    # ── Reads ──

    @property
    def state(self) -> FundState:
        return self._state

    @property
    def transactions(self) -> Tuple[Transaction, ...]:
        return tuple(self._transactions)

    def current_unit_price(self) -> Optional[Decimal]:
        """
        Current price of one unit.

        With no units outstanding the seed price is returned; a fund that was
        never seeded returns ``None`` (not yet capitalised).
        """
        price = self._state.unit_price
        if price is None:
            return self._state.seed_price
        return price

    def position(self, member_id: Hashable) -> Optional[MemberPosition]:
        return self._positions.get(member_id)

    def positions(self) -> List[MemberPosition]:
        return list(self._positions.values())

    def member_value(self, member_id: Hashable) -> Decimal:
        """Current value of a member's units (``units_owned * unit_price``)."""
        position = self._positions.get(member_id)
        state = self._state
        if position is None or state.total_units <= 0:
            return _ZERO
        with localcontext(_LEDGER_CONTEXT):
            value = position.units_owned * state.total_value / state.total_units
        return _quantize(value, VALUE_QUANTUM)

    def ownership_pct(self, member_id: Hashable) -> Decimal:
        """Member's share of units outstanding, as a fraction between 0 and 1."""
        position = self._positions.get(member_id)
        if position is None or self._state.total_units <= 0:
            return _ZERO
        with localcontext(_LEDGER_CONTEXT):
            return position.units_owned / self._state.total_units

    def check_reconciliation(self) -> Reconciliation:
        """Compare member holdings with the fund total without raising."""
        with localcontext(_LEDGER_CONTEXT):
            member_units = sum((p.units_owned for p in self._positions.values()), _ZERO)
        negatives = tuple(
            p.member_id for p in self._positions.values() if p.units_owned < 0
        )
        return Reconciliation(
            total_units=self._state.total_units,
            member_units=member_units,
            negative_positions=negatives,
        )

    def reconcile(self) -> Reconciliation:
        """Raise :class:`InvariantViolation` unless the ledger balances."""
        self._check_invariants(self._state, self._positions.values())
        return self.check_reconciliation()

    # ── Bootstrap ──

    def seed_price(self, price: Any) -> Decimal:
        """
        Establish the price at which the first units are issued.

        Only allowed while no units are outstanding; afterwards the price can
        only change through :meth:`revalue`.
        """
        seed = to_price(price, "seed_price")
        if seed <= 0:
            raise InvalidAmount("seed_price", price)
        if self._state.total_units > 0:
            raise PriceAlreadyEstablished(self.current_unit_price())
        self._state = replace(self._state, seed_price=seed)
        return seed

    # ── Transactions ──

    def deposit(
        self,
        member_id: Hashable,
        cash_amount: Any,
        notes: str = "",
        timestamp: Optional[datetime] = None,
    ) -> DepositResult:
        """Issue units for ``cash_amount`` at the current price."""
        cash = to_cash(cash_amount)
        if cash <= 0:
            raise InvalidAmount("cash_amount", cash_amount)
        price_before = self._require_price("deposit")
        state = self._state

        with localcontext(_LEDGER_CONTEXT):
            if state.total_units > 0:
                raw_units = cash * state.total_units / state.total_value
            else:
                raw_units = cash / price_before
        units = _quantize(raw_units, UNIT_QUANTUM)
        if units <= 0:
            raise InvalidAmount("cash_amount", cash_amount, "is too small to issue any units")

        position = self._positions.get(member_id) or MemberPosition(member_id)
        with localcontext(_LEDGER_CONTEXT):
            new_position = replace(
                position,
                units_owned=position.units_owned + units,
                total_contributed=position.total_contributed + cash,
            )
            new_state = replace(
                state,
                total_value=state.total_value + cash,
                total_units=state.total_units + units,
            )
        self._apply(
            new_state,
            [new_position],
            TransactionType.DEPOSIT,
            member_id=member_id,
            cash_amount=cash,
            units_delta=units,
            price_before=price_before,
            notes=notes,
            timestamp=timestamp,
        )
        return DepositResult(units_issued=units, new_unit_price=self.current_unit_price())

    def withdraw(
        self,
        member_id: Hashable,
        cash_amount: Any,
        notes: str = "",
        timestamp: Optional[datetime] = None,
    ) -> WithdrawalResult:
        """Redeem units worth ``cash_amount`` at the current price."""
        cash = to_cash(cash_amount)
        if cash <= 0:
            raise InvalidAmount("cash_amount", cash_amount)
        state = self._state
        if cash > state.total_value:
            raise InsufficientFundValue(cash, state.total_value)
        price_before = self._require_price("withdraw")

        with localcontext(_LEDGER_CONTEXT):
            raw_units = cash * state.total_units / state.total_value
        units = _quantize(raw_units, UNIT_QUANTUM)
        if units <= 0:
            raise InvalidAmount("cash_amount", cash_amount, "is too small to redeem any units")

        position = self._positions.get(member_id)
        available = position.units_owned if position else _ZERO
        if units > available:
            raise InsufficientUnits(member_id, units, available)
        if units > state.total_units:
            raise InsufficientUnits(member_id, units, state.total_units)

        # The last units out take whatever value is left so none is orphaned.
        cash_paid = state.total_value if units == state.total_units else cash
        return self._redeem(
            position, units, cash_paid, price_before, notes, timestamp
        )

    def withdraw_all(
        self,
        member_id: Hashable,
        notes: str = "",
        timestamp: Optional[datetime] = None,
    ) -> WithdrawalResult:
        """
        Close a member's position by redeeming every unit it holds.

        The payout is the units' value at 12 decimal places, so the members
        who stay keep the price they had.  The last units out take whatever
        value is left.
        """
        position = self._positions.get(member_id)
        if position is None or position.units_owned <= 0:
            raise InsufficientUnits(member_id, UNIT_QUANTUM, _ZERO)
        state = self._state
        units = position.units_owned
        if units > state.total_units:
            raise InsufficientUnits(member_id, units, state.total_units)

        price_before = state.unit_price
        if units == state.total_units:
            cash_paid = state.total_value
        else:
            with localcontext(_LEDGER_CONTEXT):
                raw_cash = units * state.total_value / state.total_units
            cash_paid = _quantize(raw_cash, VALUE_QUANTUM)
        return self._redeem(
            position, units, cash_paid, price_before, notes, timestamp
        )

    def adjust_units_direct(
        self,
        member_id: Hashable,
        units_delta: Any,
        notes: str = "",
        timestamp: Optional[datetime] = None,
    ) -> AdjustmentResult:
        """
        Grant (positive) or remove (negative) units without a cash movement.

        The fund value moves by ``units_delta * price`` so the price is
        unchanged, and the member's cost basis moves by the same amount.
        """
        delta = to_units(units_delta)
        if delta == 0:
            raise InvalidAmount("units_delta", units_delta, "must not be zero")
        price_before = self._require_price("adjust units")
        state = self._state

        position = self._positions.get(member_id) or MemberPosition(member_id)
        if delta < 0 and -delta > position.units_owned:
            raise InsufficientUnits(member_id, -delta, position.units_owned)

        with localcontext(_LEDGER_CONTEXT):
            if state.total_units > 0:
                raw_cash = delta * state.total_value / state.total_units
            else:
                raw_cash = delta * price_before
        cash_equivalent = _quantize(raw_cash, VALUE_QUANTUM)

        with localcontext(_LEDGER_CONTEXT):
            new_value = state.total_value + cash_equivalent
            if new_value < 0:
                raise InsufficientFundValue(-cash_equivalent, state.total_value)
            new_position = replace(
                position,
                units_owned=position.units_owned + delta,
                total_contributed=position.total_contributed + cash_equivalent,
            )
            new_state = replace(
                state,
                total_value=new_value,
                total_units=state.total_units + delta,
            )
        self._apply(
            new_state,
            [new_position],
            TransactionType.UNIT_ADJUSTMENT,
            member_id=member_id,
            cash_amount=cash_equivalent,
            units_delta=delta,
            price_before=price_before,
            notes=notes,
            timestamp=timestamp,
        )
        return AdjustmentResult(
            cash_equivalent=cash_equivalent, new_unit_price=self.current_unit_price()
        )

    def revalue(
        self,
        new_total_value: Any,
        notes: str = "",
        timestamp: Optional[datetime] = None,
    ) -> RevaluationResult:
        """Set the market value of the pooled assets; units are unchanged."""
        value = to_value(new_total_value, "new_total_value")
        if value < 0:
            raise InvalidAmount("new_total_value", new_total_value, "must not be negative")
        state = self._state
        if state.total_units <= 0:
            raise UndefinedPrice("revalue")

        old_price = state.unit_price
        new_state = replace(state, total_value=value)
        new_price = new_state.unit_price
        pct_change: Optional[Decimal] = None
        if old_price:
            with localcontext(_LEDGER_CONTEXT):
                pct_change = _quantize(
                    (new_price - old_price) / old_price * 100, PCT_QUANTUM
                )

        self._apply(
            new_state,
            [],
            TransactionType.REVALUATION,
            member_id=None,
            cash_amount=None,
            units_delta=_ZERO,
            price_before=old_price,
            notes=notes,
            timestamp=timestamp,
        )
        return RevaluationResult(
            old_price=_quantize(old_price, PRICE_QUANTUM),
            new_price=_quantize(new_price, PRICE_QUANTUM),
            pct_change=pct_change,
        )

    def replay(self, entries: Iterable[LedgerEntry]) -> List[Transaction]:
        """
        Apply a transaction log in order, all or nothing.

        Used for bulk imports so imported history obeys the same rules as live
        transactions.  On failure the engine is restored to its state before
        the first entry and the error is re-raised with ``entry_index`` set.
        """
        saved_state = self._state
        saved_positions = dict(self._positions)
        saved_count = len(self._transactions)

        for index, entry in enumerate(entries):
            try:
                self._apply_entry(entry)
            except LedgerError as exc:
                self._state = saved_state
                self._positions = saved_positions
                del self._transactions[saved_count:]
                exc.entry_index = index
                raise
        return self._transactions[saved_count:]

    # ── Internals ──

    def _apply_entry(self, entry: LedgerEntry) -> None:
        kind = TransactionType(entry.tx_type)
        if kind is TransactionType.REVALUATION:
            self.revalue(entry.amount, notes=entry.notes, timestamp=entry.timestamp)
            return
        if entry.member_id is None:
            raise InvalidAmount("member_id", None, f"is required for a {kind.value}")
        if kind is TransactionType.DEPOSIT:
            self.deposit(entry.member_id, entry.amount, entry.notes, entry.timestamp)
        elif kind is TransactionType.WITHDRAWAL:
            self.withdraw(entry.member_id, entry.amount, entry.notes, entry.timestamp)
        else:
            self.adjust_units_direct(
                entry.member_id, entry.amount, entry.notes, entry.timestamp
            )

    def _require_price(self, operation: str) -> Decimal:
        price = self.current_unit_price()
        if price is None or price <= 0:
            raise UndefinedPrice(operation)
        return price

    def _redeem(
        self,
        position: MemberPosition,
        units: Decimal,
        cash_paid: Decimal,
        price_before: Optional[Decimal],
        notes: str,
        timestamp: Optional[datetime],
    ) -> WithdrawalResult:
        state = self._state
        with localcontext(_LEDGER_CONTEXT):
            new_position = replace(
                position,
                units_owned=position.units_owned - units,
                total_contributed=position.total_contributed - cash_paid,
            )
            new_state = replace(
                state,
                total_value=state.total_value - cash_paid,
                total_units=state.total_units - units,
            )
        if new_state.total_units == 0 and new_state.seed_price is None and price_before:
            # Keep the last price so the fund can be recapitalised at it.
            new_state = replace(new_state, seed_price=_quantize(price_before, PRICE_QUANTUM))
        self._apply(
            new_state,
            [new_position],
            TransactionType.WITHDRAWAL,
            member_id=position.member_id,
            cash_amount=cash_paid,
            units_delta=-units,
            price_before=price_before,
            notes=notes,
            timestamp=timestamp,
        )
        return WithdrawalResult(
            units_removed=units,
            new_unit_price=self.current_unit_price(),
            cash_paid=cash_paid,
        )

    def _apply(
        self,
        new_state: FundState,
        changed: List[MemberPosition],
        tx_type: TransactionType,
        *,
        member_id: Optional[Hashable],
        cash_amount: Optional[Decimal],
        units_delta: Decimal,
        price_before: Optional[Decimal],
        notes: str,
        timestamp: Optional[datetime],
    ) -> Transaction:
        positions = dict(self._positions)
        for position in changed:
            positions[position.member_id] = position
        self._check_invariants(new_state, positions.values())

        transaction = Transaction(
            tx_type=tx_type,
            member_id=member_id,
            cash_amount=cash_amount,
            units_delta=units_delta,
            unit_price_at_transaction=(
                _quantize(price_before, PRICE_QUANTUM) if price_before is not None else None
            ),
            value_after=new_state.total_value,
            units_after=new_state.total_units,
            timestamp=timestamp or _utc_now(),
            notes=notes,
        )
        self._state = new_state
        self._positions = positions
        self._transactions.append(transaction)
        return transaction

    @staticmethod
    def _check_invariants(state: FundState, positions: Iterable[MemberPosition]) -> None:
        positions = list(positions)
        with localcontext(_LEDGER_CONTEXT):
            member_units = sum((p.units_owned for p in positions), _ZERO)
        if state.total_units < 0 or state.total_value < 0:
            raise InvariantViolation(
                state.total_units,
                member_units,
                f"fund totals must not be negative (value={state.total_value})",
            )
        if state.total_units == 0 and state.total_value != 0:
            raise InvariantViolation(
                state.total_units,
                member_units,
                f"fund holds value {state.total_value} with no units outstanding",
            )
        negative = [p.member_id for p in positions if p.units_owned < 0]
        if negative:
            raise InvariantViolation(
                state.total_units, member_units, f"negative units held by {negative}"
            )
        if member_units != state.total_units:
            raise InvariantViolation(state.total_units, member_units)
