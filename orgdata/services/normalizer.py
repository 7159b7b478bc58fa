"""Normalizer: turns one raw organisation fragment into a typed record."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import date

from orgdata.schemas.organisation import (
    Location,
    OrganisationRecord,
    Period,
    RelationshipRecord,
    RoleRecord,
    SuccessionRecord,
)
from orgdata.services.reader import UnsupportedFormatError, local_name


def _children(elem: ET.Element | None, name: str) -> list[ET.Element]:
    if elem is None:
        return []
    return [c for c in elem if local_name(c.tag) == name]


def _child(elem: ET.Element | None, *path: str) -> ET.Element | None:
    for name in path:
        if elem is None:
            return None
        elem = next((c for c in elem if local_name(c.tag) == name), None)
    return elem


def _attr(elem: ET.Element | None, name: str) -> str | None:
    return elem.get(name) if elem is not None else None


def _text(elem: ET.Element | None, *path: str) -> str | None:
    found = _child(elem, *path)
    if found is None or found.text is None:
        return None
    return found.text.strip() or None


def _flag(value: str | None) -> bool:
    return value is not None and value.strip().lower() == "true"


def _date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise UnsupportedFormatError(f"Malformed date '{value}'") from exc


def _unique_id(elem: ET.Element, attr: str) -> int:
    value = elem.get(attr)
    if value is None or not value.strip().isdigit():
        raise UnsupportedFormatError(f"{local_name(elem.tag)} is missing a numeric {attr}")
    return int(value)


def _is_active(elem: ET.Element | None) -> bool:
    return _attr(_child(elem, "Status"), "value") == "Active"


def _period(date_elem: ET.Element | None) -> Period:
    return Period(
        start=_date(_attr(_child(date_elem, "Start"), "value")),
        end=_date(_attr(_child(date_elem, "End"), "value")),
    )


def _typed_period(elem: ET.Element, period_type: str) -> Period | None:
    for d in _children(elem, "Date"):
        if _attr(_child(d, "Type"), "value") == period_type:
            return _period(d)
    return None


def _window(elem: ET.Element) -> Period:
    """The operational window of a role or relationship, else its first date."""
    return _typed_period(elem, "Operational") or _period(_child(elem, "Date"))


def parse_location(elem: ET.Element | None) -> Location:
    uprn = _text(elem, "UPRN")
    return Location(
        address1=_text(elem, "AddrLn1"),
        address2=_text(elem, "AddrLn2"),
        town=_text(elem, "Town"),
        county=_text(elem, "County"),
        postcode=_text(elem, "PostCode"),
        country=_text(elem, "Country"),
        uprn=int(uprn) if uprn and uprn.isdigit() else None,
    )


def parse_role(elem: ET.Element) -> RoleRecord:
    window = _window(elem)
    return RoleRecord(
        unique_id=_unique_id(elem, "uniqueRoleId"),
        role_type=elem.get("id") or "",
        is_primary=_flag(elem.get("primaryRole")),
        active=_is_active(elem),
        start_date=window.start,
        end_date=window.end,
    )


def parse_relationship(elem: ET.Element) -> RelationshipRecord:
    window = _window(elem)
    target = _child(elem, "Target", "OrgId")
    return RelationshipRecord(
        unique_id=_unique_id(elem, "uniqueRelId"),
        relationship_type=elem.get("id") or "",
        target_code=(_attr(target, "extension") or "").upper(),
        target_root=_attr(target, "root"),
        active=_is_active(elem),
        start_date=window.start,
        end_date=window.end,
    )


def parse_succession(elem: ET.Element) -> tuple[str | None, SuccessionRecord]:
    """Return the succession type ("Predecessor" or "Successor") and the link."""
    target = _child(elem, "Target")
    org_id = _child(target, "OrgId")
    record = SuccessionRecord(
        unique_id=_unique_id(elem, "uniqueSuccId"),
        target_code=(_attr(org_id, "extension") or "").upper(),
        target_root=_attr(org_id, "root"),
        carried_primary_role=_attr(_child(target, "PrimaryRoleId"), "id"),
        effective_date=_window(elem).start,
    )
    return _text(elem, "Type"), record


def normalize_element(org: ET.Element) -> OrganisationRecord | None:
    """Parse an `Organisation` element; reference-only stubs yield None."""
    if _flag(org.get("refOnly")):
        return None

    org_id = _child(org, "OrgId")
    code = _attr(org_id, "extension")
    root = _attr(org_id, "root")
    name = _text(org, "Name")
    if not code or not root or name is None:
        raise UnsupportedFormatError("Organisation is missing its OrgId or Name")

    predecessors: list[SuccessionRecord] = []
    successors: list[SuccessionRecord] = []
    for succ in _children(_child(org, "Succs"), "Succ"):
        succ_type, record = parse_succession(succ)
        if succ_type == "Predecessor":
            predecessors.append(record)
        elif succ_type == "Successor":
            successors.append(record)

    return OrganisationRecord(
        root=root,
        code=code.upper(),
        assigning_authority=_attr(org_id, "assigningAuthorityName"),
        name=name,
        record_class=org.get("orgRecordClass") or "",
        active=_is_active(org),
        location=parse_location(_child(org, "GeoLoc", "Location")),
        roles=[parse_role(r) for r in _children(_child(org, "Roles"), "Role")],
        relationships=[parse_relationship(r) for r in _children(_child(org, "Rels"), "Rel")],
        predecessors=predecessors,
        successors=successors,
        operational=_typed_period(org, "Operational"),
        legal=_typed_period(org, "Legal"),
    )


def normalize(fragment: bytes) -> OrganisationRecord | None:
    """Parse one serialized `Organisation` fragment."""
    try:
        elem = ET.fromstring(fragment)
    except ET.ParseError as exc:
        raise UnsupportedFormatError(f"Unparseable organisation fragment: {exc}") from exc
    return normalize_element(elem)
