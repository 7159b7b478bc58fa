"""Edge models: typed relationships and successions between organisations."""

from __future__ import annotations

from sqlalchemy import BigInteger, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from orgdata.models.base import Base


class Relationship(Base):
    """A directed, typed link such as RE6 ("is operated by").

    The source distribution carries an activity window for each relationship;
    it is not persisted.
    """

    __tablename__ = "relationship"

    # uniqueRelId from the source distribution
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    source_code: Mapped[str] = mapped_column(
        String(12), ForeignKey("organisation.code"), nullable=False, index=True
    )
    relationship_type: Mapped[str] = mapped_column(String(12), nullable=False)
    target_code: Mapped[str] = mapped_column(
        String(12), ForeignKey("organisation.code"), nullable=False, index=True
    )

    __table_args__ = (
        Index("ix_relationship_children", "target_code", "relationship_type"),
    )

    def __repr__(self) -> str:
        return f"<Relationship {self.source_code} {self.relationship_type} {self.target_code}>"


class Succession(Base):
    """Continuity of one organisation as another across a closure or merger."""

    __tablename__ = "succession"

    # uniqueSuccId from the source distribution
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    predecessor_code: Mapped[str] = mapped_column(
        String(12), ForeignKey("organisation.code"), nullable=False, index=True
    )
    successor_code: Mapped[str] = mapped_column(
        String(12), ForeignKey("organisation.code"), nullable=False, index=True
    )
    carried_primary_role: Mapped[str | None] = mapped_column(String(12), nullable=True)

    def __repr__(self) -> str:
        return f"<Succession {self.predecessor_code} -> {self.successor_code}>"
