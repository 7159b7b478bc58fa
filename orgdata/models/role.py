"""Role model: the classification(s) an organisation holds over time."""

from __future__ import annotations

from datetime import date

from sqlalchemy import BigInteger, Boolean, Date, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from orgdata.models.base import Base


class Role(Base):
    """A role held by an organisation, e.g. RO72 (GP practice)."""

    __tablename__ = "role"

    # uniqueRoleId from the source distribution
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    org_code: Mapped[str] = mapped_column(
        String(12), ForeignKey("organisation.code"), nullable=False, index=True
    )
    role_type: Mapped[str] = mapped_column(String(12), nullable=False, index=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return f"<Role {self.org_code} {self.role_type}>"
