"""
Member position model.

A member's holding in one fund.  Rows are only ever written by the ledger
service from engine output, so the units of all positions in a fund sum to
the fund's ``total_units``.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from clubfund.engine import MemberPosition


class MemberPositionRecord(SQLModel, table=True):
    """SQLModel / SQLAlchemy table definition for member positions."""

    __tablename__ = "member_positions"  # type: ignore[assignment]

    __table_args__ = (
        UniqueConstraint("fund_id", "member_id", name="uq_member_positions_fund_member"),
        CheckConstraint("units_owned >= 0", name="ck_member_positions_units_non_negative"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    fund_id: uuid.UUID = Field(foreign_key="funds.id", index=True, ondelete="RESTRICT")
    member_id: uuid.UUID = Field(foreign_key="members.id", index=True, ondelete="RESTRICT")
    units_owned: Decimal = Field(default=Decimal("0"), max_digits=28, decimal_places=12)
    # Net cash paid in (deposits and unit grants at their cash equivalent)
    # less cash paid out.
    total_contributed: Decimal = Field(
        default=Decimal("0"), max_digits=28, decimal_places=12
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    def to_position(self) -> MemberPosition:
        return MemberPosition(
            member_id=self.member_id,
            units_owned=self.units_owned,
            total_contributed=self.total_contributed,
        )

    def apply_position(self, position: MemberPosition) -> None:
        self.units_owned = position.units_owned
        self.total_contributed = position.total_contributed
        self.updated_at = datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return (
            f"<MemberPositionRecord fund={self.fund_id} member={self.member_id} "
            f"units={self.units_owned}>"
        )
