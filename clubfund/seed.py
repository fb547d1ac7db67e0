"""
Seed script: populates the database with a demo club for development.

Usage:
    python -m clubfund.seed

The demo fund opens at a total value of 913,810.31 over 18,175.61 units.
The opening balances are replayed through the ledger (unit grants at the seed
price, then a revaluation), so the demo data obeys the same rules as live
transactions.

The script is idempotent: it does nothing if the demo fund already exists.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlmodel import SQLModel

from clubfund.db.session import AsyncSessionLocal, engine
from clubfund.engine import TransactionType
from clubfund.models.fund import Fund
from clubfund.models.member import Member
from clubfund.models.transaction import LedgerTransaction
from clubfund.models.valuation import UnitValuation
from clubfund.repositories.fund_repo import FundRepository
from clubfund.repositories.ledger_repo import LedgerRepository
from clubfund.repositories.member_repo import MemberRepository
from clubfund.repositories.transaction_repo import TransactionRepository
from clubfund.repositories.valuation_repo import ValuationRepository
from clubfund.schemas.fund import FundCreate
from clubfund.schemas.ledger import ImportEntry, ImportRequest, ValuationCreate
from clubfund.schemas.member import MemberCreate
from clubfund.services.fund_locks import FundLockRegistry
from clubfund.services.ledger_service import LedgerService
from clubfund.services.member_service import MemberService

logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger(__name__)

FUND_NAME = "FFA Investment Club Portfolio"
SEED_PRICE = Decimal("10.00")
OPENING_VALUE = Decimal("913810.31")
OPENING_DATE = datetime(2025, 1, 31, tzinfo=timezone.utc)

# (name, email, opening units); the units sum to 18,175.61.
MEMBERS = [
    ("Felecia Carter", "felecia@example.com", Decimal("1852.53")),
    ("Marcus Reed", "marcus@example.com", Decimal("6210.40")),
    ("Dana Whitfield", "dana@example.com", Decimal("5078.15")),
    ("Owen Alvarez", "owen@example.com", Decimal("5034.53")),
]


async def seed() -> None:
    """Create tables and the demo club if it does not exist yet."""
    import clubfund.db.base  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async with AsyncSessionLocal() as session:
        fund_repo = FundRepository(Fund, session)
        if await fund_repo.get_by_name(FUND_NAME) is not None:
            logger.info("Demo fund already exists, skipping seed.")
            return

        member_service = MemberService(MemberRepository(Member, session))
        ledger_service = LedgerService(
            ledger_repo=LedgerRepository(session),
            fund_repo=fund_repo,
            member_repo=MemberRepository(Member, session),
            transaction_repo=TransactionRepository(LedgerTransaction, session),
            valuation_repo=ValuationRepository(UnitValuation, session),
            locks=FundLockRegistry(),
        )

        members = []
        for name, email, units in MEMBERS:
            member = await member_service.create_member(MemberCreate(name=name, email=email))
            members.append((member, units))

        fund = await ledger_service.create_fund(
            FundCreate(name=FUND_NAME, seed_price=SEED_PRICE)
        )

        entries = [
            ImportEntry(
                tx_type=TransactionType.UNIT_ADJUSTMENT,
                amount=units,
                member_id=member.id,
                notes="Opening balance",
                timestamp=OPENING_DATE,
            )
            for member, units in members
        ]
        entries.append(
            ImportEntry(
                tx_type=TransactionType.REVALUATION,
                amount=OPENING_VALUE,
                notes="Opening portfolio valuation",
                timestamp=OPENING_DATE,
            )
        )
        outcome = await ledger_service.import_ledger(fund.id, ImportRequest(entries=entries))
        await ledger_service.record_valuation(
            fund.id,
            ValuationCreate(valuation_date=OPENING_DATE.date(), notes="Opening valuation"),
        )

        logger.info(
            "Seeded %d members and fund '%s': value=%s units=%s price=%s",
            len(members),
            FUND_NAME,
            outcome.fund.total_value,
            outcome.fund.total_units,
            outcome.fund.unit_price,
        )


if __name__ == "__main__":
    asyncio.run(seed())
