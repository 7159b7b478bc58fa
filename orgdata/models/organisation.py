"""Organisation model: core entity of the reference data store."""

from __future__ import annotations

from datetime import date

from sqlalchemy import BigInteger, Boolean, Date, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from orgdata.models.base import Base

# HL7 OID for HealthAndSocialCareOrganisationIdentifier; every organisation
# in the distribution is expected to carry it as its identifier root.
ORGANISATION_ID_ROOT = "2.16.840.1.113883.2.1.3.2.4.18.48"


class Organisation(Base):
    """A health or care organisation, or one of its sites."""

    __tablename__ = "organisation"

    code: Mapped[str] = mapped_column(String(12), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    record_class: Mapped[str] = mapped_column(String(8), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False)

    address1: Mapped[str | None] = mapped_column(Text, nullable=True)
    address2: Mapped[str | None] = mapped_column(Text, nullable=True)
    town: Mapped[str | None] = mapped_column(Text, nullable=True)
    county: Mapped[str | None] = mapped_column(Text, nullable=True)
    country: Mapped[str | None] = mapped_column(Text, nullable=True)
    postcode: Mapped[str | None] = mapped_column(String(10), nullable=True)
    uprn: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # National grid coordinates, denormalized from the postcode directory
    northing: Mapped[int | None] = mapped_column(Integer, nullable=True)
    easting: Mapped[int | None] = mapped_column(Integer, nullable=True)

    operational_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    operational_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        Index("ix_organisation_coords", "northing", "easting"),
    )

    def __repr__(self) -> str:
        return f"<Organisation {self.code}>"


# Case-insensitive name lookups
Index("ix_organisation_name", func.lower(Organisation.name))
