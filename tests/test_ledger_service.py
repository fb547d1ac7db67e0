"""
Unit tests for LedgerService: business logic layer.

The ledger repository is the real one, running over a mocked AsyncSession, so
the load / apply / commit cycle is exercised end to end.  The other
repositories are mocked.  Tests cover:
- create_fund: success, duplicate name, invalid seed, IntegrityError (TOCTOU race)
- deposit / withdraw / adjust_units / revalue: committed state, sequence
  numbers, member checks, rollback on rejection
- record_valuation and import_ledger
- Locking: LedgerBusy when the fund lock cannot be acquired
- Retries of transient commit failures; IntegrityError → 409
- get_summary (live and as of a day), reconcile, member_timeline,
  list_transactions, list_valuations
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from clubfund.core.exceptions import ConflictException, LedgerBusy, NotFoundException
from clubfund.engine import (
    InsufficientUnits,
    InvalidAmount,
    InvariantViolation,
    TransactionType,
    UndefinedPrice,
)
from clubfund.models.position import MemberPositionRecord
from clubfund.models.valuation import UnitValuation
from clubfund.repositories.ledger_repo import LedgerRepository
from clubfund.schemas.fund import FundCreate
from clubfund.schemas.ledger import (
    AdjustmentRequest,
    DepositRequest,
    ImportEntry,
    ImportRequest,
    RevaluationRequest,
    ValuationCreate,
    WithdrawalRequest,
)
from clubfund.services.fund_locks import FundLockRegistry
from clubfund.services.ledger_service import LedgerService

from .conftest import (
    FUND_ID,
    MEMBER_ID,
    MEMBER_ID_2,
    make_fund,
    make_position,
    make_transaction,
    make_valuation,
    query_result,
    snapshot_results,
)

# ────────────────────────────────────────────────────────────────────────────
# Fixtures
# ────────────────────────────────────────────────────────────────────────────


def funded(units: str = "100", value: str = "1500", **kwargs):
    """A fund with ``units`` held by MEMBER_ID, plus its position rows."""
    fund = make_fund(total_value=Decimal(value), total_units=Decimal(units), **kwargs)
    return fund, [make_position(units_owned=Decimal(units), total_contributed=Decimal(value))]


@pytest.fixture()
def fund_repo():
    repo = AsyncMock()
    repo.db = AsyncMock()
    return repo


@pytest.fixture()
def member_repo():
    repo = AsyncMock()
    repo.existing_ids.return_value = {MEMBER_ID, MEMBER_ID_2}
    return repo


@pytest.fixture()
def tx_repo():
    return AsyncMock()


@pytest.fixture()
def valuation_repo():
    return AsyncMock()


@pytest.fixture()
def locks():
    return FundLockRegistry(timeout=0.05)


@pytest.fixture()
def service(mock_db, fund_repo, member_repo, tx_repo, valuation_repo, locks):
    return LedgerService(
        ledger_repo=LedgerRepository(mock_db),
        fund_repo=fund_repo,
        member_repo=member_repo,
        transaction_repo=tx_repo,
        valuation_repo=valuation_repo,
        locks=locks,
    )


def _added(mock_db, model):
    return [c.args[0] for c in mock_db.add.call_args_list if isinstance(c.args[0], model)]


# ────────────────────────────────────────────────────────────────────────────
# create_fund / get_fund
# ────────────────────────────────────────────────────────────────────────────


class TestCreateFund:
    """Tests for LedgerService.create_fund."""

    @pytest.mark.asyncio
    async def test_creates_fund_with_seed_price(self, service, fund_repo):
        fund_repo.get_by_name.return_value = None
        fund_repo.create.side_effect = lambda fund: fund

        result = await service.create_fund(FundCreate(name="Growth", seed_price="12.5"))

        assert result.name == "Growth"
        assert result.seed_price == Decimal("12.50000000")
        assert result.total_units == 0
        fund_repo.create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_creates_unseeded_fund(self, service, fund_repo):
        fund_repo.get_by_name.return_value = None
        fund_repo.create.side_effect = lambda fund: fund

        result = await service.create_fund(FundCreate(name="Growth"))

        assert result.seed_price is None
        assert result.unit_price is None

    @pytest.mark.asyncio
    async def test_duplicate_name(self, service, fund_repo):
        fund_repo.get_by_name.return_value = make_fund()

        with pytest.raises(ConflictException) as exc_info:
            await service.create_fund(FundCreate(name="Club Portfolio"))
        assert exc_info.value.status_code == 409
        fund_repo.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_seed_price(self, service, fund_repo):
        fund_repo.get_by_name.return_value = None

        with pytest.raises(InvalidAmount) as exc_info:
            await service.create_fund(FundCreate(name="Growth", seed_price="-1"))
        assert exc_info.value.field == "seed_price"
        fund_repo.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_integrity_error_becomes_conflict(self, service, fund_repo):
        fund_repo.get_by_name.return_value = None
        fund_repo.create.side_effect = IntegrityError("INSERT", {}, Exception("dup"))

        with pytest.raises(ConflictException):
            await service.create_fund(FundCreate(name="Growth"))
        fund_repo.db.rollback.assert_awaited_once()


class TestGetFund:
    @pytest.mark.asyncio
    async def test_found(self, service, fund_repo):
        fund_repo.get.return_value = make_fund()
        result = await service.get_fund(FUND_ID)
        assert result.id == FUND_ID

    @pytest.mark.asyncio
    async def test_not_found(self, service, fund_repo):
        fund_repo.get.return_value = None
        with pytest.raises(NotFoundException) as exc_info:
            await service.get_fund(FUND_ID)
        assert "Fund" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_list_funds_passes_pagination(self, service, fund_repo):
        fund_repo.get_all.return_value = [make_fund()]
        result = await service.list_funds(skip=5, limit=10)
        assert len(result) == 1
        fund_repo.get_all.assert_awaited_once_with(skip=5, limit=10)


# ────────────────────────────────────────────────────────────────────────────
# Ledger mutations
# ────────────────────────────────────────────────────────────────────────────


class TestDeposit:
    """Tests for LedgerService.deposit."""

    @pytest.mark.asyncio
    async def test_first_deposit_at_seed_price(self, service, mock_db):
        fund = make_fund()
        mock_db.execute.side_effect = snapshot_results(fund)

        outcome = await service.deposit(
            FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="1000.00")
        )

        assert outcome.result.units_issued == Decimal("100.00000000")
        assert outcome.fund.total_units == Decimal("100")
        assert outcome.fund.total_value == Decimal("1000.00")
        assert outcome.fund.transaction_count == 1
        tx = outcome.transaction
        assert tx.sequence == 1
        assert tx.tx_type is TransactionType.DEPOSIT
        assert tx.member_id == MEMBER_ID
        assert tx.unit_price_at_transaction == Decimal("10.00000000")
        mock_db.commit.assert_awaited_once()

        records = _added(mock_db, MemberPositionRecord)
        assert len(records) == 1
        assert records[0].units_owned == Decimal("100")
        assert records[0].total_contributed == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_sequence_continues_from_fund_count(self, service, mock_db):
        fund, positions = funded(transaction_count=7)
        mock_db.execute.side_effect = snapshot_results(fund, positions)

        outcome = await service.deposit(
            FUND_ID, DepositRequest(member_id=MEMBER_ID_2, cash_amount="150")
        )

        assert outcome.transaction.sequence == 8
        assert outcome.fund.transaction_count == 8
        assert outcome.result.units_issued == Decimal("10.00000000")
        # The untouched position of MEMBER_ID is not rewritten.
        records = _added(mock_db, MemberPositionRecord)
        assert [r.member_id for r in records] == [MEMBER_ID_2]

    @pytest.mark.asyncio
    async def test_unknown_member(self, service, member_repo, mock_db):
        member_repo.existing_ids.return_value = set()

        with pytest.raises(NotFoundException) as exc_info:
            await service.deposit(
                FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="10")
            )
        assert "Member" in exc_info.value.message
        mock_db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_fund(self, service, mock_db):
        mock_db.execute.side_effect = [query_result(first=None)]

        with pytest.raises(NotFoundException):
            await service.deposit(
                FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="10")
            )
        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_amount_rolls_back(self, service, mock_db):
        fund, positions = funded()
        mock_db.execute.side_effect = snapshot_results(fund, positions)

        with pytest.raises(InvalidAmount):
            await service.deposit(
                FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="0")
            )

        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_awaited()
        assert fund.total_value == Decimal("1500")
        assert fund.transaction_count == 0

    @pytest.mark.asyncio
    async def test_unseeded_fund(self, service, mock_db):
        mock_db.execute.side_effect = snapshot_results(make_fund(seed_price=None))

        with pytest.raises(UndefinedPrice):
            await service.deposit(
                FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="10")
            )
        mock_db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_inconsistent_snapshot_is_not_touched(self, service, mock_db):
        fund = make_fund(total_value=Decimal("1000"), total_units=Decimal("100"))
        positions = [make_position(units_owned=Decimal("90"))]
        mock_db.execute.side_effect = snapshot_results(fund, positions)

        with pytest.raises(InvariantViolation):
            await service.deposit(
                FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="10")
            )
        mock_db.commit.assert_not_awaited()
        mock_db.rollback.assert_awaited_once()


class TestWithdraw:
    @pytest.mark.asyncio
    async def test_partial_withdrawal(self, service, mock_db):
        fund, positions = funded()
        mock_db.execute.side_effect = snapshot_results(fund, positions)

        outcome = await service.withdraw(
            FUND_ID, WithdrawalRequest(member_id=MEMBER_ID, cash_amount="300")
        )

        assert outcome.result.units_removed == Decimal("20.00000000")
        assert outcome.result.cash_paid == Decimal("300.00")
        assert outcome.fund.total_units == Decimal("80")
        assert positions[0].units_owned == Decimal("80")
        assert positions[0].total_contributed == Decimal("1200")
        assert outcome.transaction.tx_type is TransactionType.WITHDRAWAL

    @pytest.mark.asyncio
    async def test_full_withdrawal(self, service, mock_db):
        fund, positions = funded()
        mock_db.execute.side_effect = snapshot_results(fund, positions)

        outcome = await service.withdraw(
            FUND_ID, WithdrawalRequest(member_id=MEMBER_ID, full=True)
        )

        assert outcome.result.cash_paid == Decimal("1500")
        assert outcome.fund.total_units == 0
        assert outcome.fund.total_value == 0
        assert outcome.fund.unit_price == Decimal("10.00000000")

    @pytest.mark.asyncio
    async def test_more_than_held(self, service, mock_db):
        fund, positions = funded()
        positions.append(make_position(member_id=MEMBER_ID_2, units_owned=Decimal("0")))
        mock_db.execute.side_effect = snapshot_results(fund, positions)

        with pytest.raises(InsufficientUnits):
            await service.withdraw(
                FUND_ID, WithdrawalRequest(member_id=MEMBER_ID_2, cash_amount="15")
            )
        mock_db.commit.assert_not_awaited()


class TestAdjustAndRevalue:
    @pytest.mark.asyncio
    async def test_unit_grant(self, service, mock_db):
        fund, positions = funded()
        mock_db.execute.side_effect = snapshot_results(fund, positions)

        outcome = await service.adjust_units(
            FUND_ID, AdjustmentRequest(member_id=MEMBER_ID_2, units_delta="10")
        )

        assert outcome.result.cash_equivalent == Decimal("150")
        assert outcome.fund.total_units == Decimal("110")
        assert outcome.fund.unit_price == Decimal("15.00000000")

    @pytest.mark.asyncio
    async def test_revalue_records_valuation(self, service, mock_db):
        fund, positions = funded()
        mock_db.execute.side_effect = [*snapshot_results(fund, positions), query_result()]

        outcome = await service.revalue(
            FUND_ID,
            RevaluationRequest(
                new_total_value="1800", valuation_date=date(2025, 3, 31), notes="Q1"
            ),
        )

        assert outcome.result.old_price == Decimal("15.00000000")
        assert outcome.result.new_price == Decimal("18.00000000")
        assert outcome.result.pct_change == Decimal("20.0000")
        valuation = outcome.valuation
        assert valuation.valuation_date == date(2025, 3, 31)
        assert valuation.unit_value == Decimal("18.00000000")
        assert valuation.total_units_outstanding == Decimal("100")
        assert valuation.notes == "Q1"

    @pytest.mark.asyncio
    async def test_revalue_defaults_to_today(self, service, mock_db):
        fund, positions = funded()
        mock_db.execute.side_effect = [*snapshot_results(fund, positions), query_result()]

        with patch(
            "clubfund.services.ledger_service._today", return_value=date(2025, 6, 30)
        ):
            outcome = await service.revalue(
                FUND_ID, RevaluationRequest(new_total_value="1600")
            )

        assert outcome.valuation.valuation_date == date(2025, 6, 30)

    @pytest.mark.asyncio
    async def test_seed_price(self, service, mock_db):
        mock_db.execute.side_effect = snapshot_results(make_fund(seed_price=None))

        fund = await service.seed_price(FUND_ID, "25")

        assert fund.seed_price == Decimal("25.00000000")
        assert fund.transaction_count == 0
        mock_db.commit.assert_awaited_once()


class TestRecordValuation:
    @pytest.mark.asyncio
    async def test_replaces_same_day_valuation(self, service, mock_db):
        fund, positions = funded()
        existing = make_valuation(valuation_date=date(2025, 6, 30), unit_value=Decimal("12"))
        mock_db.execute.side_effect = [
            *snapshot_results(fund, positions),
            query_result(first=existing),
        ]

        result = await service.record_valuation(
            FUND_ID, ValuationCreate(valuation_date=date(2025, 6, 30))
        )

        assert result is existing
        assert result.unit_value == Decimal("15.00000000")
        assert result.total_value == Decimal("1500")
        assert fund.transaction_count == 0

    @pytest.mark.asyncio
    async def test_new_valuation_row(self, service, mock_db):
        fund, positions = funded()
        mock_db.execute.side_effect = [*snapshot_results(fund, positions), query_result()]

        result = await service.record_valuation(
            FUND_ID, ValuationCreate(valuation_date=date(2025, 7, 1), notes="Month end")
        )

        assert isinstance(result, UnitValuation)
        assert result.fund_id == FUND_ID
        assert result.notes == "Month end"
        assert _added(mock_db, UnitValuation) == [result]

    @pytest.mark.asyncio
    async def test_no_units_outstanding(self, service, mock_db):
        mock_db.execute.side_effect = snapshot_results(make_fund())

        with pytest.raises(UndefinedPrice):
            await service.record_valuation(
                FUND_ID, ValuationCreate(valuation_date=date(2025, 7, 1))
            )
        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_awaited()


class TestImportLedger:
    @pytest.mark.asyncio
    async def test_imports_in_order(self, service, mock_db):
        fund = make_fund()
        mock_db.execute.side_effect = snapshot_results(fund)
        request = ImportRequest(
            entries=[
                ImportEntry(tx_type="unit_adjustment", amount="100", member_id=MEMBER_ID),
                ImportEntry(tx_type="unit_adjustment", amount="50", member_id=MEMBER_ID_2),
                ImportEntry(tx_type="revaluation", amount="3000"),
            ]
        )

        outcome = await service.import_ledger(FUND_ID, request)

        assert [tx.sequence for tx in outcome.transactions] == [1, 2, 3]
        assert outcome.fund.transaction_count == 3
        assert outcome.fund.total_value == Decimal("3000")
        assert outcome.fund.unit_price == Decimal("20.00000000")
        assert len(_added(mock_db, MemberPositionRecord)) == 2

    @pytest.mark.asyncio
    async def test_failing_entry_rejects_batch(self, service, mock_db):
        fund = make_fund()
        mock_db.execute.side_effect = snapshot_results(fund)
        request = ImportRequest(
            entries=[
                ImportEntry(tx_type="deposit", amount="100", member_id=MEMBER_ID),
                ImportEntry(tx_type="withdrawal", amount="50", member_id=MEMBER_ID_2),
            ]
        )

        with pytest.raises(InsufficientUnits) as exc_info:
            await service.import_ledger(FUND_ID, request)

        assert exc_info.value.entry_index == 1
        assert fund.total_units == 0
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_member_in_batch(self, service, member_repo, mock_db):
        member_repo.existing_ids.return_value = {MEMBER_ID}
        request = ImportRequest(
            entries=[
                ImportEntry(tx_type="deposit", amount="100", member_id=MEMBER_ID),
                ImportEntry(tx_type="deposit", amount="100", member_id=MEMBER_ID_2),
            ]
        )

        with pytest.raises(NotFoundException) as exc_info:
            await service.import_ledger(FUND_ID, request)
        assert str(MEMBER_ID_2) in exc_info.value.message
        mock_db.execute.assert_not_awaited()


# ────────────────────────────────────────────────────────────────────────────
# Locking, retries and commit failures
# ────────────────────────────────────────────────────────────────────────────


class TestConcurrencyAndFailures:
    @pytest.mark.asyncio
    async def test_busy_fund(self, service, locks, mock_db):
        lock = locks.lock_for(FUND_ID)
        await lock.acquire()
        try:
            with pytest.raises(LedgerBusy) as exc_info:
                await service.deposit(
                    FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="10")
                )
        finally:
            lock.release()

        assert exc_info.value.status_code == 503
        mock_db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lock_released_after_rejection(self, service, locks, mock_db):
        mock_db.execute.side_effect = snapshot_results(make_fund(seed_price=None))

        with pytest.raises(UndefinedPrice):
            await service.deposit(
                FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="10")
            )
        assert locks.is_locked(FUND_ID) is False

    @pytest.mark.asyncio
    async def test_transient_commit_failure_is_retried(self, service, mock_db):
        first_fund, second_fund = make_fund(), make_fund()
        mock_db.execute.side_effect = [
            *snapshot_results(first_fund),
            *snapshot_results(second_fund),
        ]
        mock_db.commit.side_effect = [
            OperationalError("COMMIT", {}, Exception("connection reset")),
            None,
        ]

        with patch("clubfund.core.resilience.asyncio.sleep", new_callable=AsyncMock):
            outcome = await service.deposit(
                FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="100")
            )

        assert outcome.fund is second_fund
        assert outcome.transaction.sequence == 1
        assert mock_db.commit.await_count == 2
        assert mock_db.rollback.await_count == 1

    @pytest.mark.asyncio
    async def test_integrity_error_becomes_conflict(self, service, mock_db):
        mock_db.execute.side_effect = snapshot_results(make_fund())
        mock_db.commit.side_effect = IntegrityError("INSERT", {}, Exception("dup sequence"))

        with pytest.raises(ConflictException):
            await service.deposit(
                FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="100")
            )
        assert mock_db.commit.await_count == 1
        mock_db.rollback.assert_awaited_once()


# ────────────────────────────────────────────────────────────────────────────
# Reads
# ────────────────────────────────────────────────────────────────────────────


class TestSummaryAndReconciliation:
    @pytest.mark.asyncio
    async def test_summary_holdings(self, service, mock_db):
        fund = make_fund(total_value=Decimal("1500"), total_units=Decimal("100"))
        positions = [
            make_position(
                member_id=MEMBER_ID_2,
                units_owned=Decimal("25"),
                total_contributed=Decimal("250"),
            ),
            make_position(units_owned=Decimal("75"), total_contributed=Decimal("750")),
        ]
        mock_db.execute.side_effect = snapshot_results(fund, positions)

        summary = await service.get_summary(FUND_ID)

        assert summary.unit_price == Decimal("15.00000000")
        assert [h.member_id for h in summary.holdings] == [MEMBER_ID, MEMBER_ID_2]
        top = summary.holdings[0]
        assert top.ownership_pct == Decimal("75.0000")
        assert top.current_value == Decimal("1125.00")
        assert top.total_contributed == Decimal("750.00")
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_summary_of_inconsistent_fund(self, service, mock_db):
        fund = make_fund(total_value=Decimal("1500"), total_units=Decimal("100"))
        mock_db.execute.side_effect = snapshot_results(fund, [])

        with pytest.raises(InvariantViolation):
            await service.get_summary(FUND_ID)

    @pytest.mark.asyncio
    async def test_summary_unknown_fund(self, service, mock_db):
        mock_db.execute.side_effect = [query_result(first=None)]
        with pytest.raises(NotFoundException):
            await service.get_summary(FUND_ID)

    @pytest.mark.asyncio
    async def test_reconcile_reports_mismatch(self, service, mock_db):
        fund = make_fund(total_value=Decimal("1500"), total_units=Decimal("100"))
        positions = [make_position(units_owned=Decimal("99.5"))]
        mock_db.execute.side_effect = snapshot_results(fund, positions)

        report = await service.reconcile(FUND_ID)

        assert report.balanced is False
        assert report.difference == Decimal("-0.5")

    @pytest.mark.asyncio
    async def test_reconcile_balanced(self, service, mock_db):
        fund, positions = funded()
        mock_db.execute.side_effect = snapshot_results(fund, positions)

        report = await service.reconcile(FUND_ID)

        assert report.balanced is True
        assert report.member_units == Decimal("100")


class TestHistory:
    @pytest.mark.asyncio
    async def test_list_transactions(self, service, fund_repo, tx_repo):
        fund_repo.get.return_value = make_fund()
        tx_repo.get_by_fund.return_value = [make_transaction()]

        result = await service.list_transactions(FUND_ID, member_id=MEMBER_ID, limit=10)

        assert len(result) == 1
        tx_repo.get_by_fund.assert_awaited_once_with(
            FUND_ID, member_id=MEMBER_ID, skip=0, limit=10
        )

    @pytest.mark.asyncio
    async def test_list_transactions_unknown_fund(self, service, fund_repo, tx_repo):
        fund_repo.get.return_value = None
        with pytest.raises(NotFoundException):
            await service.list_transactions(FUND_ID)
        tx_repo.get_by_fund.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_list_valuations(self, service, fund_repo, valuation_repo):
        fund_repo.get.return_value = make_fund()
        valuation_repo.get_by_fund.return_value = [make_valuation()]

        result = await service.list_valuations(FUND_ID, start=date(2025, 1, 1))

        assert len(result) == 1
        valuation_repo.get_by_fund.assert_awaited_once_with(
            FUND_ID, start=date(2025, 1, 1), end=None
        )


# ────────────────────────────────────────────────────────────────────────────
# Point-in-time views
# ────────────────────────────────────────────────────────────────────────────


def _history():
    """Deposit in January, revaluation on 31 March, second member in April."""
    return [
        make_transaction(
            sequence=1,
            created_at=datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc),
        ),
        make_transaction(
            sequence=2,
            member_id=None,
            tx_type=TransactionType.REVALUATION,
            cash_amount=None,
            units_delta=Decimal("0"),
            value_after=Decimal("1500.00"),
            units_after=Decimal("100"),
            # Naive, as SQLite hands it back.
            created_at=datetime(2025, 3, 31, 23, 30),
        ),
        make_transaction(
            sequence=3,
            member_id=MEMBER_ID_2,
            cash_amount=Decimal("300.00"),
            units_delta=Decimal("20"),
            value_after=Decimal("1800.00"),
            units_after=Decimal("120"),
            created_at=datetime(2025, 4, 2, 10, 0, tzinfo=timezone.utc),
        ),
    ]


class TestSummaryAsOf:
    @pytest.mark.asyncio
    async def test_rebuilt_from_history(self, service, fund_repo, tx_repo, mock_db):
        fund_repo.get.return_value = make_fund(transaction_count=3)
        tx_repo.get_history.return_value = _history()

        summary = await service.get_summary(FUND_ID, as_of=date(2025, 3, 31))

        assert summary.as_of == date(2025, 3, 31)
        assert summary.total_value == Decimal("1500.00")
        assert summary.unit_price == Decimal("15.00000000")
        assert summary.transaction_count == 2
        assert [h.member_id for h in summary.holdings] == [MEMBER_ID]
        assert summary.holdings[0].current_value == Decimal("1500.00")
        assert summary.holdings[0].total_contributed == Decimal("1000.00")
        tx_repo.get_history.assert_awaited_once_with(FUND_ID)
        mock_db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_later_day_includes_new_member(self, service, fund_repo, tx_repo):
        fund_repo.get.return_value = make_fund()
        tx_repo.get_history.return_value = _history()

        summary = await service.get_summary(FUND_ID, as_of=date(2025, 4, 30))

        assert summary.total_units == Decimal("120")
        assert [h.member_id for h in summary.holdings] == [MEMBER_ID, MEMBER_ID_2]
        assert summary.holdings[1].ownership_pct == Decimal("16.6667")

    @pytest.mark.asyncio
    async def test_before_first_transaction(self, service, fund_repo, tx_repo):
        fund_repo.get.return_value = make_fund()
        tx_repo.get_history.return_value = _history()

        summary = await service.get_summary(FUND_ID, as_of=date(2024, 12, 31))

        assert summary.total_units == 0
        assert summary.unit_price == Decimal("10.00000000")
        assert summary.holdings == []
        assert summary.transaction_count == 0

    @pytest.mark.asyncio
    async def test_unknown_fund(self, service, fund_repo, tx_repo):
        fund_repo.get.return_value = None
        with pytest.raises(NotFoundException):
            await service.get_summary(FUND_ID, as_of=date(2025, 3, 31))
        tx_repo.get_history.assert_not_awaited()


class TestMemberTimeline:
    @pytest.fixture()
    def member_history(self):
        return [
            make_transaction(
                sequence=3,
                member_id=MEMBER_ID_2,
                cash_amount=Decimal("300.00"),
                units_delta=Decimal("20"),
                created_at=datetime(2025, 4, 2, tzinfo=timezone.utc),
            ),
            make_transaction(
                sequence=7,
                member_id=MEMBER_ID_2,
                tx_type=TransactionType.WITHDRAWAL,
                cash_amount=Decimal("100.00"),
                units_delta=Decimal("-5"),
                created_at=datetime(2025, 8, 1, tzinfo=timezone.utc),
            ),
        ]

    @pytest.fixture()
    def valuations(self):
        return [
            make_valuation(
                valuation_date=date(2025, 3, 31),
                total_value=Decimal("1500.00"),
                total_units_outstanding=Decimal("100"),
                unit_value=Decimal("15.00000000"),
            ),
            make_valuation(
                valuation_date=date(2025, 6, 30),
                total_value=Decimal("2400.00"),
                total_units_outstanding=Decimal("120"),
                unit_value=Decimal("20.00000000"),
            ),
            make_valuation(
                valuation_date=date(2025, 9, 30),
                total_value=Decimal("2300.00"),
                total_units_outstanding=Decimal("115"),
                unit_value=Decimal("20.00000000"),
            ),
        ]

    @pytest.mark.asyncio
    async def test_points_start_after_member_joins(
        self, service, fund_repo, tx_repo, valuation_repo, member_history, valuations
    ):
        fund_repo.get.return_value = make_fund()
        tx_repo.get_history.return_value = member_history
        valuation_repo.get_by_fund.return_value = valuations

        points = await service.member_timeline(FUND_ID, MEMBER_ID_2)

        assert [p.valuation_date for p in points] == [date(2025, 6, 30), date(2025, 9, 30)]
        assert points[0].units_owned == Decimal("20")
        assert points[0].current_value == Decimal("400.00")
        assert points[0].total_contributed == Decimal("300.00")
        tx_repo.get_history.assert_awaited_once_with(FUND_ID, member_id=MEMBER_ID_2)

    @pytest.mark.asyncio
    async def test_withdrawal_reduces_contribution(
        self, service, fund_repo, tx_repo, valuation_repo, member_history, valuations
    ):
        fund_repo.get.return_value = make_fund()
        tx_repo.get_history.return_value = member_history
        valuation_repo.get_by_fund.return_value = valuations

        points = await service.member_timeline(FUND_ID, MEMBER_ID_2)

        last = points[-1]
        assert last.units_owned == Decimal("15")
        assert last.unit_value == Decimal("20.00000000")
        assert last.current_value == Decimal("300.00")
        assert last.total_contributed == Decimal("200.00")

    @pytest.mark.asyncio
    async def test_no_valuations(self, service, fund_repo, tx_repo, valuation_repo):
        fund_repo.get.return_value = make_fund()
        tx_repo.get_history.return_value = [make_transaction()]
        valuation_repo.get_by_fund.return_value = []

        assert await service.member_timeline(FUND_ID, MEMBER_ID) == []

    @pytest.mark.asyncio
    async def test_unknown_member(self, service, fund_repo, member_repo, tx_repo):
        fund_repo.get.return_value = make_fund()
        member_repo.existing_ids.return_value = set()

        with pytest.raises(NotFoundException):
            await service.member_timeline(FUND_ID, MEMBER_ID)
        tx_repo.get_history.assert_not_awaited()
