"""
Database model registry.

Importing this module ensures all table models are registered with
SQLModel's metadata, which is required before calling ``create_all()``.
"""

from clubfund.models.fund import Fund  # noqa: F401
from clubfund.models.member import Member  # noqa: F401
from clubfund.models.position import MemberPositionRecord  # noqa: F401
from clubfund.models.transaction import LedgerTransaction  # noqa: F401
from clubfund.models.valuation import UnitValuation  # noqa: F401
