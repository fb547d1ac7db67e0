"""
Service factories for FastAPI's ``Depends()``.

Each request gets fresh service instances wired to its own DB session, so one
request's transaction cannot bleed into another.  Tests swap these out via
``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clubfund.db.session import get_db
from clubfund.models.fund import Fund
from clubfund.models.member import Member
from clubfund.models.transaction import LedgerTransaction
from clubfund.models.valuation import UnitValuation
from clubfund.repositories.fund_repo import FundRepository
from clubfund.repositories.ledger_repo import LedgerRepository
from clubfund.repositories.member_repo import MemberRepository
from clubfund.repositories.transaction_repo import TransactionRepository
from clubfund.repositories.valuation_repo import ValuationRepository
from clubfund.services.ledger_service import LedgerService
from clubfund.services.member_service import MemberService


def get_member_service(db: AsyncSession = Depends(get_db)) -> MemberService:
    """Build a MemberService wired to the current request's DB session."""
    return MemberService(MemberRepository(Member, db))


def get_ledger_service(db: AsyncSession = Depends(get_db)) -> LedgerService:
    """Build a LedgerService wired to the current request's DB session."""
    return LedgerService(
        ledger_repo=LedgerRepository(db),
        fund_repo=FundRepository(Fund, db),
        member_repo=MemberRepository(Member, db),
        transaction_repo=TransactionRepository(LedgerTransaction, db),
        valuation_repo=ValuationRepository(UnitValuation, db),
    )
