"""
Member service: business logic for club members.

Duplicate emails are detected before the insert to give a friendly message.
The pre-check is subject to a TOCTOU race (two concurrent registrations can
both pass it), so the unique constraint's ``IntegrityError`` is translated
to the same 409 Conflict.
"""

import logging
from typing import List
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from clubfund.core.exceptions import ConflictException, NotFoundException
from clubfund.models.member import Member
from clubfund.repositories.member_repo import MemberRepository
from clubfund.schemas.member import MemberCreate

logger = logging.getLogger(__name__)


class MemberService:
    """Encapsulates CRUD + business rules for :class:`Member`."""

    def __init__(self, member_repo: MemberRepository):
        self._repo = member_repo

    # ── Queries ──

    async def list_members(self, skip: int = 0, limit: int = 100) -> List[Member]:
        """Return a paginated list of members."""
        return await self._repo.get_all(skip=skip, limit=limit)

    async def get_member(self, member_id: UUID) -> Member:
        """Raises :class:`NotFoundException` if the member does not exist."""
        member = await self._repo.get(member_id)
        if member is None:
            raise NotFoundException("Member", member_id)
        return member

    # ── Commands ──

    async def create_member(self, member_in: MemberCreate) -> Member:
        """
        Register a new member.

        Raises :class:`ConflictException` if the email is already registered.
        """
        email = str(member_in.email)
        existing = await self._repo.get_by_email(email)
        if existing:
            raise ConflictException(f"A member with email '{email}' already exists")

        member = Member(name=member_in.name, email=email)
        try:
            created = await self._repo.create(member)
        except IntegrityError:
            await self._repo.db.rollback()
            logger.warning(
                "IntegrityError caught for duplicate email '%s' (TOCTOU race)", email
            )
            raise ConflictException(f"A member with email '{email}' already exists")

        logger.info("Created member %s (%s)", created.id, created.name)
        return created
