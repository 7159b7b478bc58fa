"""Release metadata and code systems."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from orgdata.models.base import Base, utcnow

# Code systems referenced by organisation data
ROLE_CODE_SYSTEM = "2.16.840.1.113883.2.1.3.2.4.17.507"
RELATIONSHIP_CODE_SYSTEM = "2.16.840.1.113883.2.1.3.2.4.17.508"
RECORD_CLASS_CODE_SYSTEM = "2.16.840.1.113883.2.1.3.2.4.23"


class CodeSystemEntry(Base):
    """One concept from a code system, e.g. RO72 in the role code system."""

    __tablename__ = "code_system"

    code_system_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(16), primary_key=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<CodeSystemEntry {self.code_system_id}|{self.code}>"


class Release(Base):
    """A published release of the source distribution."""

    __tablename__ = "release"

    release_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    release_date: Mapped[date] = mapped_column(Date, nullable=False)
    loaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<Release {self.release_id} {self.release_date}>"


class Manifest(Base):
    """Header of one source document within a release."""

    __tablename__ = "manifest"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    version: Mapped[str] = mapped_column(String(20), nullable=False)
    publication_type: Mapped[str] = mapped_column(String(50), nullable=False)
    publication_date: Mapped[date] = mapped_column(Date, nullable=False)
    content_description: Mapped[str] = mapped_column(Text, nullable=False)
    record_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Manifest {self.content_description} {self.publication_date}>"
