"""Request and response bodies of the organisation API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from orgdata.schemas.organisation import ExtendedOrganisation, OrganisationSummary


class FetchRequest(BaseModel):
    """Batch fetch of organisations by code."""

    codes: list[str] = Field(..., min_length=1, max_length=1000)


class FetchResponse(BaseModel):
    organisations: list[ExtendedOrganisation]
    missing: list[str] = Field(default_factory=list)


class CodeSetResponse(BaseModel):
    """A set of organisation codes related to one organisation."""

    code: str
    codes: list[str]


class PartOfResponse(BaseModel):
    """The parent an organisation is best described as part of, if any."""

    code: str
    part_of: str | None = None


class SearchResponse(BaseModel):
    """Search results.

    Exactly one of `codes`, `organisations` or `extended` is filled, according
    to `result`.
    """

    result: str
    count: int
    codes: list[str] | None = None
    organisations: list[OrganisationSummary] | None = None
    extended: list[ExtendedOrganisation] | None = None
