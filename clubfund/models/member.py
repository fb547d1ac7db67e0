"""
Member model.

A club member who can hold units in any of the club's funds.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel


class Member(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for members.

    ``email`` has a unique index, so duplicate registrations are rejected by
    the database even when two requests race.
    """

    __tablename__ = "members"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("length(name) > 0", name="ck_members_name_not_empty"),
        CheckConstraint("length(email) > 0", name="ck_members_email_not_empty"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True, max_length=255)
    email: str = Field(unique=True, index=True, max_length=320)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Member id={self.id} name='{self.name}'>"
