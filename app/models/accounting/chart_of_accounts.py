"""Chart of Accounts model."""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4, UUID
from sqlalchemy import String, Boolean, Enum, Index, Integer, Numeric, UniqueConstraint, Uuid
from sqlalchemy.orm import mapped_column, Mapped

from app.models.base import Base
from app.domain.accounting.enums import AccountType, NormalBalance


class ChartOfAccount(Base):
    """
    Chart of Accounts node.

    The hierarchy is stored as a parent pointer (``parent_code``) only;
    tree walks live in the account registry. ``current_balance`` is written
    by the posting engine alone.
    """

    __tablename__ = "chart_of_accounts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    account_type: Mapped[AccountType] = mapped_column(Enum(AccountType), nullable=False)
    normal_balance: Mapped[NormalBalance] = mapped_column(Enum(NormalBalance), nullable=False)

    parent_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0, nullable=False)
    current_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0, nullable=False)

    is_cash: Mapped[bool] = mapped_column(Boolean, default=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_chart_of_accounts_org_code"),
        Index("idx_chart_of_accounts_org_parent", "organization_id", "parent_code"),
    )

    def __repr__(self) -> str:
        return f"<ChartOfAccount {self.code} {self.name!r}>"
