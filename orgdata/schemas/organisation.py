"""Schemas for organisation records: as parsed, and as served."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class Period(BaseModel):
    """An activity window; either end may be open."""

    start: date | None = None
    end: date | None = None


class Location(BaseModel):
    """Free-text address of an organisation."""

    address1: str | None = None
    address2: str | None = None
    town: str | None = None
    county: str | None = None
    postcode: str | None = None
    country: str | None = None
    uprn: int | None = None


class RoleRecord(BaseModel):
    """A role as it appears in the source distribution."""

    unique_id: int
    role_type: str
    is_primary: bool = False
    active: bool = False
    start_date: date | None = None
    end_date: date | None = None


class RelationshipRecord(BaseModel):
    """A typed link from the organisation to a target organisation."""

    unique_id: int
    relationship_type: str
    target_code: str
    target_root: str | None = None
    active: bool = False
    start_date: date | None = None
    end_date: date | None = None


class SuccessionRecord(BaseModel):
    """A predecessor or successor link."""

    unique_id: int
    target_code: str
    target_root: str | None = None
    carried_primary_role: str | None = None
    effective_date: date | None = None


class OrganisationRecord(BaseModel):
    """A normalized organisation, ready to be written to the store."""

    root: str
    code: str
    assigning_authority: str | None = None
    name: str
    record_class: str
    active: bool
    is_reference: bool = False
    location: Location = Field(default_factory=Location)
    roles: list[RoleRecord] = Field(default_factory=list)
    relationships: list[RelationshipRecord] = Field(default_factory=list)
    predecessors: list[SuccessionRecord] = Field(default_factory=list)
    successors: list[SuccessionRecord] = Field(default_factory=list)
    operational: Period | None = None
    legal: Period | None = None

    @property
    def primary_role(self) -> RoleRecord | None:
        return next((r for r in self.roles if r.is_primary), None)


class CodeRecord(BaseModel):
    """One concept of a code system."""

    code_system_id: str
    code: str
    display_name: str


class ManifestRecord(BaseModel):
    """Header of a source document."""

    version: str
    publication_type: str
    publication_date: date
    content_description: str
    record_count: int | None = None


class ReleaseRecord(BaseModel):
    """Identity of a release, supplied by whoever fetched it."""

    release_id: str
    release_date: date


# ─── Served shapes ──────────────────────────────────────────────────────────


class Coordinates(BaseModel):
    """A point on the national grid, in metres."""

    northing: int
    easting: int


class OrganisationLocation(Location):
    northing: int | None = None
    easting: int | None = None
    distance: float | None = None


class OrganisationRole(BaseModel):
    role_type: str
    is_primary: bool
    active: bool
    start_date: date | None = None
    end_date: date | None = None


class OrganisationLink(BaseModel):
    """An edge as seen from one end: a relationship, predecessor or successor."""

    code: str
    relationship_type: str | None = None
    carried_primary_role: str | None = None


class OrganisationSummary(BaseModel):
    """Denormalized organisation row."""

    code: str
    root: str
    name: str
    record_class: str
    active: bool
    location: OrganisationLocation
    operational: Period | None = None


class ExtendedOrganisation(OrganisationSummary):
    """Organisation plus its roles and edges."""

    roles: list[OrganisationRole] = Field(default_factory=list)
    primary_role: OrganisationRole | None = None
    relationships: list[OrganisationLink] = Field(default_factory=list)
    predecessors: list[OrganisationLink] = Field(default_factory=list)
    successors: list[OrganisationLink] = Field(default_factory=list)
