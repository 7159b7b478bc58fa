"""Shared test fixtures for the orgdata test suite."""

from __future__ import annotations

import io

import pytest
from fastapi.testclient import TestClient

from orgdata.app import create_app
from orgdata.config import Settings
from orgdata.db import make_engine
from orgdata.schemas.organisation import Coordinates
from orgdata.service import OrganisationService
from orgdata.services.postcodes import MappingPostcodeDirectory
from orgdata.store import OrganisationStore

ROOT = "2.16.840.1.113883.2.1.3.2.4.18.48"

# Grid references used by the fixture organisations
UHW = Coordinates(northing=179317, easting=317551)        # CF14 4XW
LHB_HQ = Coordinates(northing=180100, easting=317000)     # CF14 4TT
ASHGROVE = Coordinates(northing=180777, easting=317268)   # CF14 2HB
LEEDS = Coordinates(northing=433500, easting=430000)      # LS2 7UE


def org_id(code: str, root: str = ROOT) -> str:
    return f'<OrgId root="{root}" assigningAuthorityName="HSCIC" extension="{code}"/>'


def succ(unique_id: int, succ_type: str, target: str, primary_role: str | None = None) -> str:
    role = f'<PrimaryRoleId id="{primary_role}" uniqueRoleId="9{unique_id}"/>' if primary_role else ""
    return (
        f'<Succ uniqueSuccId="{unique_id}">'
        f'<Date><Type value="Legal"/><Start value="2009-10-01"/></Date>'
        f"<Type>{succ_type}</Type>"
        f"<Target>{org_id(target)}{role}</Target>"
        f"</Succ>"
    )


def rel(unique_id: int, rel_type: str, target: str, status: str = "Active") -> str:
    return (
        f'<Rel id="{rel_type}" uniqueRelId="{unique_id}">'
        f'<Date><Type value="Operational"/><Start value="2009-10-01"/></Date>'
        f'<Status value="{status}"/>'
        f"<Target>{org_id(target)}<PrimaryRoleId id=\"RO144\" uniqueRoleId=\"1\"/></Target>"
        f"</Rel>"
    )


def role(unique_id: int, role_type: str, primary: bool = False, status: str = "Active") -> str:
    primary_attr = ' primaryRole="true"' if primary else ""
    return (
        f'<Role id="{role_type}" uniqueRoleId="{unique_id}"{primary_attr}>'
        f'<Date><Type value="Operational"/><Start value="2009-10-01"/></Date>'
        f'<Status value="{status}"/>'
        f"</Role>"
    )


def organisation(
    code: str,
    name: str,
    *,
    record_class: str = "RC1",
    status: str = "Active",
    address1: str | None = None,
    town: str = "CARDIFF",
    postcode: str | None = None,
    roles: str = "",
    rels: str = "",
    succs: str = "",
    root: str = ROOT,
    operational_end: str | None = None,
) -> str:
    end = f'<End value="{operational_end}"/>' if operational_end else ""
    addr = f"<AddrLn1>{address1}</AddrLn1>" if address1 else ""
    pc = f"<PostCode>{postcode}</PostCode>" if postcode else ""
    return (
        f'<Organisation orgRecordClass="{record_class}">'
        f"<Name>{name}</Name>"
        f'<Date><Type value="Legal"/><Start value="2009-10-01"/>{end}</Date>'
        f'<Date><Type value="Operational"/><Start value="2009-10-01"/>{end}</Date>'
        f"{org_id(code, root)}"
        f'<Status value="{status}"/>'
        f'<LastChangeDate value="2020-01-01"/>'
        f"<GeoLoc><Location>{addr}<Town>{town}</Town>{pc}<Country>WALES</Country></Location></GeoLoc>"
        f"<Roles>{roles}</Roles>"
        + (f"<Rels>{rels}</Rels>" if rels else "")
        + (f"<Succs>{succs}</Succs>" if succs else "")
        + "</Organisation>"
    )


def document(*organisations: str, version: str = "2-0-0", bom: bool = False) -> bytes:
    """Wrap organisation elements in a complete source document."""
    xml = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<OrgRefData:OrgRefData xmlns:OrgRefData="http://refdata.hscic.gov.uk/org-refdata-v2-0-0">'
        "<Manifest>"
        f'<Version value="{version}"/>'
        '<PublicationType value="Full"/>'
        '<PublicationSeqNum value="1234"/>'
        '<PublicationDate value="2024-01-15"/>'
        '<PublicationSource value="HSCOrgRefData"/>'
        f'<RecordCount value="{len(organisations)}"/>'
        '<ContentDescription value="FullFile"/>'
        "</Manifest>"
        "<CodeSystems>"
        '<CodeSystem name="OrganisationRecordClass" oid="2.16.840.1.113883.2.1.3.2.4.23">'
        '<concept id="RC1" code="1" displayName="HSCOrg"/>'
        '<concept id="RC2" code="2" displayName="HSCSite"/>'
        "</CodeSystem>"
        '<CodeSystem name="OrganisationRelationship" oid="2.16.840.1.113883.2.1.3.2.4.17.508">'
        '<concept id="RE4" code="4" displayName="IS COMMISSIONED BY"/>'
        '<concept id="RE6" code="6" displayName="IS OPERATED BY"/>'
        "</CodeSystem>"
        '<CodeSystem name="OrganisationRole" oid="2.16.840.1.113883.2.1.3.2.4.17.507">'
        '<concept id="RO76" code="76" displayName="GP PRACTICE"/>'
        '<concept id="RO144" code="144" displayName="WELSH LOCAL HEALTH BOARD"/>'
        '<concept id="RO177" code="177" displayName="PRESCRIBING COST CENTRE"/>'
        '<concept id="RO198" code="198" displayName="NHS TRUST SITE"/>'
        "</CodeSystem>"
        "</CodeSystems>"
        "<Organisations>"
        + "".join(organisations)
        + "</Organisations>"
        "</OrgRefData:OrgRefData>"
    )
    data = xml.encode("utf-8")
    return b"\xef\xbb\xbf" + data if bom else data


# RWMBV -> RWM -> 7A4 <- 6A8; 7A4BV and W95024 are children of 7A4, W95624 of W95024.
FIXTURE_ORGANISATIONS = [
    organisation(
        "7A4", "CARDIFF AND VALE UNIVERSITY LOCAL HEALTH BOARD",
        address1="WOODLAND HOUSE", postcode="CF14 4TT",
        roles=role(1001, "RO144", primary=True),
        succs=succ(100, "Predecessor", "RWM") + succ(102, "Predecessor", "6A8"),
    ),
    organisation(
        "RWM", "CARDIFF AND VALE NHS TRUST", status="Inactive", postcode="CF14 4TT",
        operational_end="2009-09-30",
        roles=role(1002, "RO197", primary=True, status="Inactive"),
        succs=succ(100, "Successor", "7A4", "RO144") + succ(101, "Predecessor", "RWMBV"),
    ),
    organisation(
        "RWMBV", "CARDIFF ROYAL INFIRMARY", record_class="RC2", status="Inactive",
        address1="NEWPORT ROAD", postcode="CF24 0SZ",
        roles=role(1003, "RO198", primary=True, status="Inactive"),
        succs=succ(101, "Successor", "RWM"),
    ),
    organisation(
        "6A8", "SOUTH GLAMORGAN HEALTH AUTHORITY", status="Inactive",
        roles=role(1004, "RO144", primary=True, status="Inactive"),
        succs=succ(102, "Successor", "7A4"),
    ),
    organisation(
        "7A4BV", "UNIVERSITY HOSPITAL OF WALES", record_class="RC2",
        address1="HEATH PARK", postcode="CF14 4XW",
        roles=role(1005, "RO198", primary=True),
        rels=rel(201, "RE6", "7A4"),
    ),
    organisation(
        "W95024", "ASHGROVE SURGERY", address1="ASHGROVE", postcode="CF14 2HB",
        roles=role(1006, "RO177", primary=True) + role(1007, "RO76"),
        rels=rel(202, "RE4", "7A4"),
    ),
    organisation(
        "W95624", "ASHGROVE BRANCH SURGERY", record_class="RC2", status="Inactive",
        postcode="CF14 2HB",
        roles=role(1008, "RO177", primary=True, status="Inactive"),
        rels=rel(203, "RE6", "W95024", status="Inactive"),
    ),
    organisation(
        "X24", "NHS ENGLAND", town="LEEDS", postcode="LS2 7UE",
        roles=role(1009, "RO116", primary=True),
    ),
    # Reference-only stubs are skipped on load
    f'<Organisation orgRecordClass="RC1" refOnly="true"><Name>REFERENCED ONLY</Name>{org_id("Q99")}</Organisation>',
]

FIXTURE_CODES = {"7A4", "RWM", "RWMBV", "6A8", "7A4BV", "W95024", "W95624", "X24"}

ODS_DOCUMENT = document(*FIXTURE_ORGANISATIONS)


def _test_settings() -> Settings:
    """Return settings suitable for testing."""
    return Settings(
        environment="development",
        debug=True,
        log_format="console",
        database_url="sqlite://",
        rate_limit_default="1000/minute",
        allowed_origins="http://localhost:3000,http://localhost:5015",
        nthreads=2,
        batch_size=3,
    )


@pytest.fixture
def settings():
    """Test settings."""
    return _test_settings()


@pytest.fixture
def ods_source():
    """The fixture document as a binary file object."""
    return io.BytesIO(ODS_DOCUMENT)


@pytest.fixture
def postcodes():
    """Postcode directory covering the fixture organisations."""
    return MappingPostcodeDirectory({
        "CF14 4XW": UHW,
        "CF14 4TT": LHB_HQ,
        "CF14 2HB": ASHGROVE,
        "LS2 7UE": LEEDS,
    })


@pytest.fixture
def engine():
    """A fresh in-memory database per test."""
    engine = make_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine, postcodes):
    """An empty store with its schema created."""
    store = OrganisationStore(engine, postcodes)
    store.create_schema()
    return store


@pytest.fixture
def loaded_store(store, ods_source):
    """A store loaded from the fixture document."""
    store.load(ods_source, nthreads=2, batch_size=3)
    return store


@pytest.fixture
def conn(loaded_store):
    """An open connection to the loaded store."""
    with loaded_store.connect() as connection:
        yield connection


@pytest.fixture
def service(loaded_store, postcodes, settings):
    service = OrganisationService(loaded_store, postcodes)
    service.settings = settings
    return service


@pytest.fixture
def app(settings, service):
    """Create a fresh FastAPI app for testing."""
    return create_app(settings, service)


@pytest.fixture
def client(app):
    """HTTP test client."""
    return TestClient(app)
