"""Composable organisation search.

A search is a list of independent filters, each narrowing an SQLAlchemy
`Select` over the organisation table. Filters compose conjunctively and only
ever bind values as parameters.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Protocol, Sequence, Union

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from sqlalchemy import Connection, Select, and_, column, exists, literal_column, select, table

from orgdata.models import Organisation, Relationship, Role
from orgdata.schemas.organisation import OrganisationSummary
from orgdata.services.postcodes import PostcodeDirectory, grid_from_wgs84
from orgdata.store import SEARCH_TABLE, extend_summaries, organisation_table, summary_from_row

logger = structlog.get_logger()

DEFAULT_RANGE_METRES = 5000

ResultShape = Literal["codes", "sorted_codes", "orgs", "ext_orgs"]

search_table = table(SEARCH_TABLE, column("code"))

_NON_WORD = re.compile(r"\W+")
_ADDRESS_COLUMNS = "{address1 address2 town county postcode}"


class InvalidSearchParameters(ValueError):
    """Raised for search options that cannot be satisfied, before any query runs."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


# ─── Parameters ─────────────────────────────────────────────────────────────


def _as_list(value: Any) -> Any:
    if isinstance(value, str):
        return [value]
    return value


class GeoFilterParams(BaseModel):
    """Centre of a geographic search.

    Grid coordinates win over a postcode, and a postcode over a WGS84
    latitude/longitude. An unknown postcode falls back to the latitude and
    longitude when both are given.
    """

    northing: int | None = None
    easting: int | None = None
    postcode: str | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)
    range_metres: int = Field(default=DEFAULT_RANGE_METRES, gt=0)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _has_origin(self) -> GeoFilterParams:
        has_coords = self.northing is not None and self.easting is not None
        has_wgs84 = self.lat is not None and self.lon is not None
        if not has_coords and not self.postcode and not has_wgs84:
            raise ValueError("geo requires northing and easting, a postcode, or lat and lon")
        if (self.northing is None) != (self.easting is None):
            raise ValueError("geo requires both northing and easting")
        if (self.lat is None) != (self.lon is None):
            raise ValueError("geo requires both lat and lon")
        return self


class ChildOfParams(BaseModel):
    """Restrict results to direct children of one organisation."""

    code: str
    relationship_types: list[str] | None = None
    role_types: list[str] | None = None
    active: bool = False

    model_config = {"extra": "forbid"}

    @field_validator("relationship_types", "role_types", mode="before")
    @classmethod
    def listify(cls, value: Any) -> Any:
        return _as_list(value)


class SearchParams(BaseModel):
    text: str | None = None
    name_text: str | None = None
    address_text: str | None = None
    active_only: bool = True
    roles: list[str] | None = None
    primary_roles: list[str] | None = None
    record_class: str | None = None
    child_of: ChildOfParams | None = None
    geo: GeoFilterParams | None = None
    limit: int | None = Field(default=None, ge=1)
    result: ResultShape = "codes"

    model_config = {"extra": "forbid"}

    @field_validator("roles", "primary_roles", mode="before")
    @classmethod
    def listify(cls, value: Any) -> Any:
        return _as_list(value)

    @classmethod
    def parse(cls, params: SearchParams | Mapping[str, Any]) -> SearchParams:
        """Validate raw parameters, raising `InvalidSearchParameters`."""
        if isinstance(params, SearchParams):
            return params
        try:
            return cls.model_validate(params)
        except ValidationError as exc:
            raise InvalidSearchParameters(
                f"Invalid search parameters: {exc.error_count()} error(s)",
                errors=exc.errors(include_url=False, include_context=False),
            ) from exc


def escape_fts_string(text: str) -> str:
    """Turn user-entered text into an FTS5 query of prefix-matched tokens."""
    tokens = [t for t in _NON_WORD.split(text.lower()) if t]
    return " ".join(f"{t}*" for t in tokens)


# ─── Filters ────────────────────────────────────────────────────────────────


class SearchFilter(Protocol):
    def apply(self, stmt: Select) -> Select:
        ...


def _matching_codes(query: str) -> Select:
    return select(search_table.c.code).where(literal_column(SEARCH_TABLE).op("MATCH")(query))


@dataclass(frozen=True)
class TextFilter:
    """Tokens matched against every indexed column."""

    query: str

    def apply(self, stmt: Select) -> Select:
        return stmt.where(Organisation.code.in_(_matching_codes(self.query)))


@dataclass(frozen=True)
class NameFilter:
    query: str

    def apply(self, stmt: Select) -> Select:
        return stmt.where(Organisation.code.in_(_matching_codes(f"{{name}} : ({self.query})")))


@dataclass(frozen=True)
class AddressFilter:
    query: str

    def apply(self, stmt: Select) -> Select:
        return stmt.where(
            Organisation.code.in_(_matching_codes(f"{_ADDRESS_COLUMNS} : ({self.query})"))
        )


@dataclass(frozen=True)
class ActiveFilter:
    def apply(self, stmt: Select) -> Select:
        return stmt.where(Organisation.active.is_(True))


@dataclass(frozen=True)
class RolesFilter:
    """Organisations holding any of `roles`, optionally as their primary role."""

    roles: tuple[str, ...]
    primary_only: bool = False

    def apply(self, stmt: Select) -> Select:
        condition = and_(Role.org_code == Organisation.code, Role.role_type.in_(self.roles))
        if self.primary_only:
            condition = and_(condition, Role.is_primary.is_(True))
        return stmt.where(exists().where(condition))


@dataclass(frozen=True)
class RecordClassFilter:
    record_class: str

    def apply(self, stmt: Select) -> Select:
        return stmt.where(Organisation.record_class == self.record_class)


@dataclass(frozen=True)
class ChildOfFilter:
    parent: str
    relationship_types: tuple[str, ...] | None = None
    role_types: tuple[str, ...] | None = None
    active: bool = False

    def apply(self, stmt: Select) -> Select:
        children = select(Relationship.source_code).where(Relationship.target_code == self.parent.upper())
        if self.relationship_types is not None:
            children = children.where(Relationship.relationship_type.in_(self.relationship_types))
        if self.role_types is not None:
            children = children.join(Role, Role.org_code == Relationship.source_code).where(
                Role.role_type.in_(self.role_types)
            )
            if self.active:
                children = children.where(Role.active.is_(True))
        elif self.active:
            stmt = stmt.where(Organisation.active.is_(True))
        return stmt.where(Organisation.code.in_(children))


@dataclass(frozen=True)
class GeoFilter:
    """Within `range_metres` of a grid reference, nearest first.

    A bounding box on each axis narrows the rows before the exact test on
    squared distance; both bounds are inclusive.
    """

    northing: int
    easting: int
    range_metres: int

    def apply(self, stmt: Select) -> Select:
        r = self.range_metres
        dn = Organisation.northing - self.northing
        de = Organisation.easting - self.easting
        distance_sq = (dn * dn + de * de).label("distance_sq")
        return (
            stmt.add_columns(distance_sq)
            .where(
                Organisation.northing.between(self.northing - r, self.northing + r),
                Organisation.easting.between(self.easting - r, self.easting + r),
                (dn * dn + de * de) <= r * r,
            )
            .order_by(distance_sq, Organisation.code)
        )


@dataclass(frozen=True)
class LimitFilter:
    limit: int

    def apply(self, stmt: Select) -> Select:
        return stmt.limit(self.limit)


Filter = Union[
    TextFilter, NameFilter, AddressFilter, ActiveFilter, RolesFilter,
    RecordClassFilter, ChildOfFilter, GeoFilter, LimitFilter,
]


# ─── Query building ─────────────────────────────────────────────────────────


def build_filters(params: SearchParams, origin: tuple[int, int] | None = None) -> list[SearchFilter]:
    """Translate parameters into filters; `origin` is the resolved geo centre."""
    filters: list[SearchFilter] = []
    if params.text and (q := escape_fts_string(params.text)):
        filters.append(TextFilter(q))
    if params.name_text and (q := escape_fts_string(params.name_text)):
        filters.append(NameFilter(q))
    if params.address_text and (q := escape_fts_string(params.address_text)):
        filters.append(AddressFilter(q))
    if params.active_only:
        filters.append(ActiveFilter())
    if params.roles:
        filters.append(RolesFilter(tuple(params.roles)))
    if params.primary_roles:
        filters.append(RolesFilter(tuple(params.primary_roles), primary_only=True))
    if params.record_class:
        filters.append(RecordClassFilter(params.record_class))
    if params.child_of is not None:
        child_of = params.child_of
        filters.append(ChildOfFilter(
            parent=child_of.code,
            relationship_types=tuple(child_of.relationship_types) if child_of.relationship_types else None,
            role_types=tuple(child_of.role_types) if child_of.role_types else None,
            active=child_of.active,
        ))
    if params.geo is not None and origin is not None:
        filters.append(GeoFilter(origin[0], origin[1], params.geo.range_metres))
    if params.limit is not None:
        filters.append(LimitFilter(params.limit))
    return filters


def build_search_query(filters: Sequence[SearchFilter]) -> Select:
    stmt = select(organisation_table)
    if not any(isinstance(f, GeoFilter) for f in filters):
        stmt = stmt.order_by(Organisation.code)
    for f in filters:
        stmt = f.apply(stmt)
    return stmt


def resolve_origin(params: SearchParams, postcodes: PostcodeDirectory | None) -> tuple[int, int] | None:
    """Grid reference at the centre of a geographic search, if one can be found."""
    geo = params.geo
    if geo is None:
        return None
    if geo.northing is not None and geo.easting is not None:
        return geo.northing, geo.easting
    if geo.postcode:
        if postcodes is None and geo.lat is None:
            raise InvalidSearchParameters("A postcode search needs a postcode directory")
        coords = postcodes.coordinates(geo.postcode) if postcodes is not None else None
        if coords is not None:
            return coords.northing, coords.easting
        logger.info("search_postcode_unknown", postcode=geo.postcode)
    if geo.lat is not None and geo.lon is not None:
        try:
            coords = grid_from_wgs84(geo.lat, geo.lon)
        except ValueError as exc:
            raise InvalidSearchParameters(str(exc)) from exc
        return coords.northing, coords.easting
    return None


def _empty(shape: ResultShape) -> Any:
    return set() if shape == "codes" else []


def search(
    conn: Connection,
    params: SearchParams | Mapping[str, Any],
    postcodes: PostcodeDirectory | None = None,
) -> Any:
    """Run a search and return results in the requested shape.

    `codes` gives a set of codes, `sorted_codes` a list (nearest first for a
    geographic search), `orgs` a list of organisation summaries and
    `ext_orgs` the same with roles and edges attached.
    """
    params = SearchParams.parse(params)
    origin = resolve_origin(params, postcodes)
    if params.geo is not None and origin is None:
        return _empty(params.result)

    rows = conn.execute(build_search_query(build_filters(params, origin))).all()

    if params.result == "codes":
        return {row.code for row in rows}
    if params.result == "sorted_codes":
        return [row.code for row in rows]

    summaries: list[OrganisationSummary] = []
    for row in rows:
        distance = math.sqrt(row.distance_sq) if origin is not None else None
        summaries.append(summary_from_row(row, distance))
    if params.result == "orgs":
        return summaries
    return extend_summaries(conn, summaries)
