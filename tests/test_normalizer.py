"""Tests for turning organisation fragments into records."""

from __future__ import annotations

from datetime import date

import pytest

from orgdata.services.normalizer import normalize
from orgdata.services.reader import UnsupportedFormatError
from tests.conftest import FIXTURE_ORGANISATIONS, ROOT, organisation, rel, role, succ


def _fragment(xml: str) -> bytes:
    return xml.encode("utf-8")


class TestNormalize:
    """Tests for the record normalizer."""

    def test_identity_and_status(self):
        record = normalize(_fragment(FIXTURE_ORGANISATIONS[0]))
        assert record is not None
        assert record.code == "7A4"
        assert record.root == ROOT
        assert record.assigning_authority == "HSCIC"
        assert record.name == "CARDIFF AND VALE UNIVERSITY LOCAL HEALTH BOARD"
        assert record.record_class == "RC1"
        assert record.active is True

    def test_inactive_status(self):
        record = normalize(_fragment(FIXTURE_ORGANISATIONS[1]))
        assert record.active is False
        assert record.operational.end == date(2009, 9, 30)
        assert record.legal.start == date(2009, 10, 1)

    def test_location(self):
        record = normalize(_fragment(FIXTURE_ORGANISATIONS[4]))
        assert record.location.address1 == "HEATH PARK"
        assert record.location.town == "CARDIFF"
        assert record.location.postcode == "CF14 4XW"
        assert record.location.country == "WALES"

    def test_roles(self):
        record = normalize(_fragment(FIXTURE_ORGANISATIONS[5]))
        assert [r.role_type for r in record.roles] == ["RO177", "RO76"]
        assert record.primary_role.role_type == "RO177"
        assert record.roles[1].is_primary is False
        assert record.roles[0].unique_id == 1006
        assert record.roles[0].start_date == date(2009, 10, 1)

    def test_relationships(self):
        record = normalize(_fragment(FIXTURE_ORGANISATIONS[6]))
        assert len(record.relationships) == 1
        link = record.relationships[0]
        assert link.relationship_type == "RE6"
        assert link.target_code == "W95024"
        assert link.active is False
        assert link.unique_id == 203

    def test_successions_are_split_by_type(self):
        record = normalize(_fragment(FIXTURE_ORGANISATIONS[1]))
        assert [s.target_code for s in record.successors] == ["7A4"]
        assert [s.target_code for s in record.predecessors] == ["RWMBV"]
        assert record.successors[0].carried_primary_role == "RO144"
        assert record.successors[0].effective_date == date(2009, 10, 1)

    def test_reference_only_is_skipped(self):
        assert normalize(_fragment(FIXTURE_ORGANISATIONS[-1])) is None

    def test_codes_are_upper_cased(self):
        record = normalize(_fragment(organisation("w95024", "LOWER", rels=rel(1, "RE6", "7a4"))))
        assert record.code == "W95024"
        assert record.relationships[0].target_code == "7A4"

    def test_other_roots_are_kept_for_the_store_to_reject(self):
        record = normalize(_fragment(organisation("ABC", "ELSEWHERE", root="1.2.3")))
        assert record.root == "1.2.3"


class TestNormalizeErrors:
    """Malformed fragments are format errors."""

    def test_missing_unique_role_id(self):
        xml = organisation("7A4", "A", roles='<Role id="RO144" primaryRole="true"><Status value="Active"/></Role>')
        with pytest.raises(UnsupportedFormatError, match="uniqueRoleId"):
            normalize(_fragment(xml))

    def test_missing_unique_succ_id(self):
        xml = organisation("7A4", "A", succs=succ(1, "Successor", "B").replace('uniqueSuccId="1"', ""))
        with pytest.raises(UnsupportedFormatError, match="uniqueSuccId"):
            normalize(_fragment(xml))

    def test_malformed_date(self):
        xml = organisation("7A4", "A", roles=role(1, "RO144").replace("2009-10-01", "01/10/2009"))
        with pytest.raises(UnsupportedFormatError, match="Malformed date"):
            normalize(_fragment(xml))

    def test_missing_name(self):
        with pytest.raises(UnsupportedFormatError):
            normalize(_fragment(organisation("7A4", "A").replace("<Name>A</Name>", "")))

    def test_unparseable_fragment(self):
        with pytest.raises(UnsupportedFormatError):
            normalize(b"<Organisation><Name>broken")
