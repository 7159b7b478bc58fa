"""Organisation lookup, search and succession endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request

from orgdata.schemas.api import CodeSetResponse, FetchRequest, FetchResponse, PartOfResponse, SearchResponse
from orgdata.schemas.organisation import ExtendedOrganisation
from orgdata.service import OrganisationService

router = APIRouter(prefix="/organisations", tags=["organisations"])


def get_service(request: Request) -> OrganisationService:
    service = request.app.state.service
    if service is None:
        raise HTTPException(status_code=503, detail="Organisation store is not initialised")
    return service


def _require(service: OrganisationService, code: str) -> None:
    if service.fetch(code) is None:
        raise HTTPException(status_code=404, detail=f"Organisation '{code}' not found")


@router.post("/fetch", response_model=FetchResponse)
def fetch_organisations(
    request: FetchRequest,
    service: OrganisationService = Depends(get_service),
) -> FetchResponse:
    """Fetch several organisations at once; unknown codes are listed as missing."""
    found = service.fetch_many(request.codes)
    found_codes = {org.code for org in found}
    missing = [c for c in dict.fromkeys(request.codes) if c.upper() not in found_codes]
    return FetchResponse(organisations=found, missing=missing)


@router.post("/search", response_model=SearchResponse)
def search_organisations(
    params: dict[str, Any] = Body(...),
    service: OrganisationService = Depends(get_service),
) -> SearchResponse:
    """Search by name, address, role, parent and distance."""
    result = service.search(params)
    shape = params.get("result", "codes")
    if shape == "codes":
        return SearchResponse(result=shape, count=len(result), codes=sorted(result))
    if shape == "sorted_codes":
        return SearchResponse(result=shape, count=len(result), codes=result)
    if shape == "orgs":
        return SearchResponse(result=shape, count=len(result), organisations=result)
    return SearchResponse(result=shape, count=len(result), extended=result)


@router.get("/{code}", response_model=ExtendedOrganisation)
def get_organisation(
    code: str,
    service: OrganisationService = Depends(get_service),
) -> ExtendedOrganisation:
    """Fetch one organisation with its roles, relationships and successions."""
    org = service.fetch(code)
    if org is None:
        raise HTTPException(status_code=404, detail=f"Organisation '{code}' not found")
    return org


@router.get("/{code}/active-successors", response_model=CodeSetResponse)
def get_active_successors(
    code: str,
    service: OrganisationService = Depends(get_service),
) -> CodeSetResponse:
    """The active organisations that now stand for `code`."""
    _require(service, code)
    return CodeSetResponse(code=code.upper(), codes=sorted(service.active_successors(code)))


@router.get("/{code}/equivalents", response_model=CodeSetResponse)
def get_equivalents(
    code: str,
    complete: bool = Query(default=True, description="Whole succession chain, not only this code's lineage"),
    service: OrganisationService = Depends(get_service),
) -> CodeSetResponse:
    _require(service, code)
    return CodeSetResponse(code=code.upper(), codes=sorted(service.equivalents(code, complete=complete)))


@router.get("/{code}/children", response_model=CodeSetResponse)
def get_children(
    code: str,
    recursive: bool = Query(default=False),
    active: bool = Query(default=False),
    relationship_type: list[str] | None = Query(default=None),
    role_type: list[str] | None = Query(default=None),
    service: OrganisationService = Depends(get_service),
) -> CodeSetResponse:
    """Organisations related to `code` as their parent."""
    _require(service, code)
    children = service.children(
        code,
        recursive=recursive,
        active=active,
        relationship_types=relationship_type,
        role_types=role_type,
    )
    return CodeSetResponse(code=code.upper(), codes=sorted(children))


@router.get("/{code}/part-of", response_model=PartOfResponse)
def get_part_of(code: str, service: OrganisationService = Depends(get_service)) -> PartOfResponse:
    _require(service, code)
    return PartOfResponse(code=code.upper(), part_of=service.part_of(code))
