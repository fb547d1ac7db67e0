"""
Ledger service: runs unit accounting operations against persisted funds.

Every mutation follows the same sequence:

1. Acquire the fund's in-process lock (:class:`FundLockRegistry`).
2. Load the fund row ``FOR UPDATE`` and its member positions.
3. Rebuild a :class:`UnitAccountingEngine` from the snapshot; an inconsistent
   snapshot raises ``InvariantViolation`` before anything runs.
4. Apply exactly one engine operation.
5. Commit the new totals, touched positions and transaction rows together.

Engine errors (``LedgerError``) propagate unchanged so the API can present
them; the transaction is rolled back first so the row lock is released.
Transient database failures retry the whole sequence with exponential
back-off.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, TypeVar
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from clubfund.core.config import settings
from clubfund.core.exceptions import ConflictException, NotFoundException
from clubfund.core.resilience import retry_with_backoff
from clubfund.engine import (
    PCT_QUANTUM,
    AdjustmentResult,
    DepositResult,
    FundState,
    LedgerEntry,
    MemberPosition,
    Reconciliation,
    RevaluationResult,
    UndefinedPrice,
    UnitAccountingEngine,
    WithdrawalResult,
    round_cash,
    to_price,
)
from clubfund.models.fund import Fund
from clubfund.models.transaction import LedgerTransaction
from clubfund.models.valuation import UnitValuation
from clubfund.repositories.fund_repo import FundRepository
from clubfund.repositories.ledger_repo import (
    LedgerRepository,
    LedgerSnapshot,
    ValuationSnapshot,
)
from clubfund.repositories.member_repo import MemberRepository
from clubfund.repositories.transaction_repo import TransactionRepository
from clubfund.repositories.valuation_repo import ValuationRepository
from clubfund.schemas.fund import FundCreate, FundSummary, MemberHolding, TimelinePoint
from clubfund.schemas.ledger import (
    AdjustmentRequest,
    DepositRequest,
    ImportRequest,
    RevaluationRequest,
    ValuationCreate,
    WithdrawalRequest,
)
from clubfund.services.fund_locks import FundLockRegistry, fund_locks

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")


@dataclass
class LedgerOutcome(Generic[ResultT]):
    """What a committed mutation produced."""

    fund: Fund
    result: ResultT
    transactions: List[LedgerTransaction]
    valuation: Optional[UnitValuation] = None

    @property
    def transaction(self) -> LedgerTransaction:
        """The single transaction written by a one-operation mutation."""
        return self.transactions[-1]


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _valuation_of(
    engine: UnitAccountingEngine, valuation_date: date, notes: str
) -> ValuationSnapshot:
    state = engine.state
    price = state.unit_price
    if price is None:
        raise UndefinedPrice("record a valuation")
    return ValuationSnapshot(
        valuation_date=valuation_date,
        total_value=state.total_value,
        total_units_outstanding=state.total_units,
        unit_value=to_price(price),
        notes=notes,
    )


# ── Point-in-time views rebuilt from the transaction history ──


def _as_utc(moment: datetime) -> datetime:
    # SQLite returns timezone-aware columns without their offset.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _applied_by(
    transactions: Iterable[LedgerTransaction], day: date
) -> List[LedgerTransaction]:
    """Transactions timestamped on or before ``day`` (UTC)."""
    cutoff = datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return [tx for tx in transactions if _as_utc(tx.created_at) < cutoff]


def _positions_from(transactions: Iterable[LedgerTransaction]) -> List[MemberPosition]:
    units: Dict[UUID, Decimal] = {}
    contributed: Dict[UUID, Decimal] = {}
    for tx in transactions:
        if tx.member_id is None:
            continue
        units[tx.member_id] = units.get(tx.member_id, Decimal("0")) + tx.units_delta
        contributed[tx.member_id] = (
            contributed.get(tx.member_id, Decimal("0")) + tx.contribution_delta
        )
    return [MemberPosition(m, units[m], contributed[m]) for m in units]


def _engine_as_of(fund: Fund, transactions: List[LedgerTransaction]) -> UnitAccountingEngine:
    """
    Rebuild the ledger as it stood after ``transactions``.

    Fund totals come from the last transaction applied; positions are the
    running sums of each member's transactions.  The rebuilt ledger is
    reconciled like a live one.
    """
    if not transactions:
        return UnitAccountingEngine(FundState(seed_price=fund.seed_price))
    last = max(transactions, key=lambda tx: tx.sequence)
    state = FundState(
        total_value=last.value_after,
        total_units=last.units_after,
        seed_price=fund.seed_price,
    )
    return UnitAccountingEngine.restore(state, _positions_from(transactions))


def _summary_of(
    fund: Fund,
    engine: UnitAccountingEngine,
    transaction_count: int,
    as_of: Optional[date] = None,
) -> FundSummary:
    holdings = []
    for position in engine.positions():
        pct = (engine.ownership_pct(position.member_id) * 100).quantize(PCT_QUANTUM)
        holdings.append(
            MemberHolding(
                member_id=position.member_id,
                units_owned=position.units_owned,
                total_contributed=round_cash(position.total_contributed),
                current_value=round_cash(engine.member_value(position.member_id)),
                ownership_pct=pct,
            )
        )
    holdings.sort(key=lambda h: h.units_owned, reverse=True)

    state = engine.state
    price = engine.current_unit_price()
    return FundSummary(
        id=fund.id,
        name=fund.name,
        total_value=state.total_value,
        total_units=state.total_units,
        unit_price=to_price(price) if price is not None else None,
        seed_price=fund.seed_price,
        transaction_count=transaction_count,
        created_at=fund.created_at,
        as_of=as_of,
        holdings=holdings,
    )


class LedgerService:
    """
    Fund lifecycle and unit accounting operations.

    Needs the ledger repository for locked read-modify-write cycles and the
    plain repositories for existence checks and history listings.
    """

    def __init__(
        self,
        ledger_repo: LedgerRepository,
        fund_repo: FundRepository,
        member_repo: MemberRepository,
        transaction_repo: TransactionRepository,
        valuation_repo: ValuationRepository,
        locks: Optional[FundLockRegistry] = None,
    ):
        self._ledger = ledger_repo
        self._fund_repo = fund_repo
        self._member_repo = member_repo
        self._tx_repo = transaction_repo
        self._valuation_repo = valuation_repo
        self._locks = locks or fund_locks

    # ── Funds ──

    async def create_fund(self, fund_in: FundCreate) -> Fund:
        """
        Create an empty fund, optionally with a seed price.

        Raises :class:`ConflictException` if the name is taken.
        """
        if await self._fund_repo.get_by_name(fund_in.name):
            raise ConflictException(f"A fund named '{fund_in.name}' already exists")

        fund = Fund(name=fund_in.name)
        if fund_in.seed_price is not None:
            fund.seed_price = UnitAccountingEngine().seed_price(fund_in.seed_price)

        try:
            created = await self._fund_repo.create(fund)
        except IntegrityError:
            await self._fund_repo.db.rollback()
            logger.warning("IntegrityError creating fund '%s' (TOCTOU race)", fund_in.name)
            raise ConflictException(f"A fund named '{fund_in.name}' already exists")

        logger.info(
            "Created fund %s (%s), seed price %s",
            created.id,
            created.name,
            created.seed_price,
            extra={"fund_id": str(created.id)},
        )
        return created

    async def list_funds(self, skip: int = 0, limit: int = 100) -> List[Fund]:
        return await self._fund_repo.get_all(skip=skip, limit=limit)

    async def get_fund(self, fund_id: UUID) -> Fund:
        """Raises :class:`NotFoundException` if the fund does not exist."""
        fund = await self._fund_repo.get(fund_id)
        if fund is None:
            raise NotFoundException("Fund", fund_id)
        return fund

    async def get_summary(self, fund_id: UUID, as_of: Optional[date] = None) -> FundSummary:
        """
        Fund totals with every member's holding, largest first.

        With ``as_of`` the summary is rebuilt from the transactions recorded
        up to the end of that day.  Raises ``InvariantViolation`` if the
        positions do not add up, rather than presenting numbers that cannot
        be trusted.
        """
        if as_of is None:
            snapshot = await self._read(fund_id)
            fund = snapshot.fund
            return _summary_of(fund, snapshot.restore(), fund.transaction_count)

        fund = await self.get_fund(fund_id)
        history = _applied_by(await self._tx_repo.get_history(fund_id), as_of)
        return _summary_of(fund, _engine_as_of(fund, history), len(history), as_of)

    async def member_timeline(self, fund_id: UUID, member_id: UUID) -> List[TimelinePoint]:
        """
        A member's units, cost basis and value at every recorded unit
        valuation, starting with the first valuation after they joined.
        """
        await self.get_fund(fund_id)
        await self._require_members([member_id])
        history = await self._tx_repo.get_history(fund_id, member_id=member_id)
        valuations = await self._valuation_repo.get_by_fund(fund_id)

        points = []
        for valuation in valuations:
            applied = _applied_by(history, valuation.valuation_date)
            if not applied:
                continue
            units = sum((tx.units_delta for tx in applied), Decimal("0"))
            contributed = sum((tx.contribution_delta for tx in applied), Decimal("0"))
            value = Decimal("0")
            if valuation.total_units_outstanding > 0:
                value = units * valuation.total_value / valuation.total_units_outstanding
            points.append(
                TimelinePoint(
                    valuation_date=valuation.valuation_date,
                    units_owned=units,
                    unit_value=valuation.unit_value,
                    current_value=round_cash(value),
                    total_contributed=round_cash(contributed),
                )
            )
        return points

    # ── Ledger operations ──

    async def seed_price(self, fund_id: UUID, price: Any) -> Fund:
        """Set the price at which the first units of a fund are issued."""
        outcome = await self._mutate(
            fund_id, "seed_price", lambda engine: engine.seed_price(price)
        )
        return outcome.fund

    async def deposit(
        self, fund_id: UUID, request: DepositRequest
    ) -> LedgerOutcome[DepositResult]:
        await self._require_members([request.member_id])
        return await self._mutate(
            fund_id,
            "deposit",
            lambda engine: engine.deposit(
                request.member_id, request.cash_amount, notes=request.notes
            ),
            member_id=request.member_id,
        )

    async def withdraw(
        self, fund_id: UUID, request: WithdrawalRequest
    ) -> LedgerOutcome[WithdrawalResult]:
        """Withdraw ``cash_amount``, or the whole position when ``full`` is set."""
        await self._require_members([request.member_id])

        def operation(engine: UnitAccountingEngine) -> WithdrawalResult:
            if request.full:
                return engine.withdraw_all(request.member_id, notes=request.notes)
            return engine.withdraw(request.member_id, request.cash_amount, notes=request.notes)

        return await self._mutate(
            fund_id, "withdrawal", operation, member_id=request.member_id
        )

    async def adjust_units(
        self, fund_id: UUID, request: AdjustmentRequest
    ) -> LedgerOutcome[AdjustmentResult]:
        await self._require_members([request.member_id])
        return await self._mutate(
            fund_id,
            "unit_adjustment",
            lambda engine: engine.adjust_units_direct(
                request.member_id, request.units_delta, notes=request.notes
            ),
            member_id=request.member_id,
        )

    async def revalue(
        self, fund_id: UUID, request: RevaluationRequest
    ) -> LedgerOutcome[RevaluationResult]:
        """Revalue the fund and record the resulting price for the valuation date."""
        return await self._mutate(
            fund_id,
            "revaluation",
            lambda engine: engine.revalue(request.new_total_value, notes=request.notes),
            valuation_date=request.valuation_date or _today(),
            valuation_notes=request.notes,
        )

    async def record_valuation(
        self, fund_id: UUID, request: ValuationCreate
    ) -> UnitValuation:
        """
        Snapshot the current unit price under ``valuation_date``.

        Replaces any valuation already recorded for that date.  Raises
        ``UndefinedPrice`` when the fund has no units outstanding.
        """
        outcome = await self._mutate(
            fund_id,
            "valuation",
            lambda engine: None,
            valuation_date=request.valuation_date,
            valuation_notes=request.notes,
        )
        return outcome.valuation

    async def import_ledger(
        self, fund_id: UUID, request: ImportRequest
    ) -> LedgerOutcome[List[Any]]:
        """
        Replay an imported transaction log through the engine.

        The batch is applied all or nothing: a failing entry rejects the whole
        import, with ``entry_index`` set on the raised error.
        """
        await self._require_members(
            entry.member_id for entry in request.entries if entry.member_id is not None
        )
        entries = [
            LedgerEntry(
                tx_type=entry.tx_type,
                amount=entry.amount,
                member_id=entry.member_id,
                notes=entry.notes,
                timestamp=entry.timestamp,
            )
            for entry in request.entries
        ]
        return await self._mutate(
            fund_id, "import", lambda engine: engine.replay(entries)
        )

    # ── History and checks ──

    async def list_transactions(
        self,
        fund_id: UUID,
        member_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[LedgerTransaction]:
        await self.get_fund(fund_id)
        return await self._tx_repo.get_by_fund(
            fund_id, member_id=member_id, skip=skip, limit=limit
        )

    async def list_valuations(
        self,
        fund_id: UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[UnitValuation]:
        await self.get_fund(fund_id)
        return await self._valuation_repo.get_by_fund(fund_id, start=start, end=end)

    async def reconcile(self, fund_id: UUID) -> Reconciliation:
        """
        Compare the sum of member units with the fund's units outstanding.

        Reports the outcome instead of raising, so an administrator can inspect
        a fund that fails reconciliation (e.g. after an out-of-band import).
        """
        snapshot = await self._read(fund_id)
        engine = UnitAccountingEngine(
            snapshot.fund.to_state(),
            [record.to_position() for record in snapshot.positions.values()],
        )
        report = engine.check_reconciliation()
        if report.balanced:
            logger.info(
                "Fund %s reconciled: %s units",
                fund_id,
                report.total_units,
                extra={"fund_id": str(fund_id)},
            )
        else:
            logger.error(
                "Fund %s failed reconciliation: members hold %s units, fund reports %s, "
                "negative positions %s",
                fund_id,
                report.member_units,
                report.total_units,
                list(report.negative_positions),
                extra={"fund_id": str(fund_id)},
            )
        return report

    # ── Internals ──

    async def _read(self, fund_id: UUID) -> LedgerSnapshot:
        snapshot = await self._ledger.load(fund_id, for_update=False)
        if snapshot is None:
            raise NotFoundException("Fund", fund_id)
        return snapshot

    async def _require_members(self, member_ids: Iterable[UUID]) -> None:
        wanted = set(member_ids)
        found = await self._member_repo.existing_ids(wanted)
        missing = sorted(wanted - found, key=str)
        if missing:
            raise NotFoundException("Member", missing[0])

    @retry_with_backoff(max_retries=settings.LEDGER_WRITE_RETRIES, base_delay=0.2)
    async def _mutate(
        self,
        fund_id: UUID,
        action: str,
        operation: Callable[[UnitAccountingEngine], ResultT],
        *,
        member_id: Optional[UUID] = None,
        valuation_date: Optional[date] = None,
        valuation_notes: str = "",
    ) -> LedgerOutcome[ResultT]:
        async with self._locks.hold(fund_id):
            try:
                snapshot = await self._ledger.load(fund_id)
                if snapshot is None:
                    raise NotFoundException("Fund", fund_id)
                engine = snapshot.restore()
                result = operation(engine)
                valuation = None
                if valuation_date is not None:
                    valuation = _valuation_of(engine, valuation_date, valuation_notes)
            except Exception:
                await self._ledger.rollback()
                raise

            try:
                saved = await self._ledger.save(snapshot, engine, valuation)
            except IntegrityError:
                logger.warning(
                    "IntegrityError committing %s on fund %s",
                    action,
                    fund_id,
                    extra={"fund_id": str(fund_id)},
                )
                raise ConflictException(
                    "The fund changed while this operation was being applied. "
                    "Please retry."
                )

        fund = snapshot.fund
        logger.info(
            "Committed %s on fund %s: %d transaction(s), value=%s units=%s price=%s",
            action,
            fund_id,
            len(saved.transactions),
            fund.total_value,
            fund.total_units,
            fund.unit_price,
            extra={
                "fund_id": str(fund_id),
                "member_id": str(member_id) if member_id else None,
                "tx_type": action,
            },
        )
        return LedgerOutcome(
            fund=fund,
            result=result,
            transactions=saved.transactions,
            valuation=saved.valuation,
        )
