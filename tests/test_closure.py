"""Tests for succession and relationship closures."""

from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from orgdata.schemas.organisation import OrganisationRecord, RelationshipRecord, RoleRecord, SuccessionRecord
from orgdata.services import closure
from orgdata.services.closure import (
    active_successors,
    active_successors_batch,
    all_child_orgs,
    all_equivalent_org_codes,
    all_equivalent_org_codes_batch,
    all_predecessors,
    all_successors,
    child_orgs,
    equivalent_org_codes,
    find_cycle_members,
    orgs_with_primary_role,
    parent_orgs,
    parent_orgs_batch,
    part_of,
)
from tests.conftest import ROOT

_ids = iter(range(50_000, 1_000_000))


def _org(code: str, *, active: bool = False, successors=(), parents=(), roles=()) -> OrganisationRecord:
    return OrganisationRecord(
        root=ROOT,
        code=code,
        name=f"ORG {code}",
        record_class="RC1",
        active=active,
        successors=[SuccessionRecord(unique_id=next(_ids), target_code=s) for s in successors],
        relationships=[
            RelationshipRecord(unique_id=next(_ids), relationship_type=t, target_code=p) for p, t in parents
        ],
        roles=[RoleRecord(unique_id=next(_ids), role_type=r, is_primary=i == 0, active=active)
               for i, r in enumerate(roles)],
    )


@pytest.fixture
def chain(store):
    """A -> B -> C, with only C active."""
    store.write_batch([
        _org("A", successors=["B"]),
        _org("B", successors=["C"]),
        _org("C", active=True),
    ])
    with store.connect() as conn:
        yield conn


@pytest.fixture
def cyclic(store):
    """A -> B -> A, neither active, plus D -> A."""
    store.write_batch([
        _org("A", successors=["B"]),
        _org("B", successors=["A"]),
        _org("D", successors=["A"]),
    ])
    with store.connect() as conn:
        yield conn


# ─── Succession ──────────────────────────────────────────────────────────────

class TestSuccessionChain:
    """Tests for transitive succession on a simple chain."""

    def test_all_successors(self, chain):
        assert all_successors(chain, "A") == {"B", "C"}
        assert all_successors(chain, "C") == set()

    def test_all_predecessors(self, chain):
        assert all_predecessors(chain, "C") == {"A", "B"}
        assert all_predecessors(chain, "A") == set()

    def test_active_successors(self, chain):
        assert active_successors(chain, "A") == {"C"}
        assert active_successors(chain, "B") == {"C"}

    def test_active_organisation_stands_for_itself(self, chain):
        assert active_successors(chain, "C") == {"C"}

    def test_equivalents_include_both_directions(self, chain):
        assert equivalent_org_codes(chain, "B") == {"A", "B", "C"}

    def test_unknown_code(self, chain):
        assert all_successors(chain, "NOPE") == set()
        assert active_successors(chain, "NOPE") == set()
        assert all_equivalent_org_codes(chain, "NOPE") == {"NOPE"}

    def test_codes_are_case_insensitive(self, chain):
        assert all_successors(chain, "a") == {"B", "C"}


class TestSuccessionFixture:
    """Tests against the loaded fixture document."""

    @pytest.mark.parametrize("code", ["RWM", "RWMBV", "6A8", "7A4"])
    def test_active_successors(self, conn, code):
        assert active_successors(conn, code) == {"7A4"}

    def test_inactive_without_active_successor(self, conn):
        assert active_successors(conn, "W95624") == set()

    def test_equivalents_depend_on_starting_point(self, conn):
        assert equivalent_org_codes(conn, "RWM") == {"RWM", "7A4", "RWMBV"}
        assert equivalent_org_codes(conn, "7A4") == {"7A4", "RWM", "RWMBV", "6A8"}

    @pytest.mark.parametrize("code", ["RWM", "RWMBV", "6A8", "7A4"])
    def test_all_equivalents_are_the_whole_component(self, conn, code):
        assert all_equivalent_org_codes(conn, code) == {"7A4", "RWM", "RWMBV", "6A8"}

    def test_successor_and_predecessor_are_mirrors(self, conn):
        for code in ("7A4", "RWM", "RWMBV", "6A8"):
            for successor in all_successors(conn, code):
                assert code in all_predecessors(conn, successor)

    def test_batch_matches_union_of_singles(self, conn):
        codes = ["RWM", "6A8", "X24", "W95624"]
        assert active_successors_batch(conn, codes) == set().union(
            *(active_successors(conn, c) for c in codes)
        )
        assert all_equivalent_org_codes_batch(conn, codes) == set().union(
            *(all_equivalent_org_codes(conn, c) for c in codes)
        )

    def test_large_batches_are_chunked(self, conn, monkeypatch):
        monkeypatch.setattr(closure, "MAX_IN_PARAMS", 2)
        assert active_successors_batch(conn, ["RWM", "RWMBV", "6A8", "X24", "7A4"]) == {"7A4", "X24"}
        assert all_equivalent_org_codes(conn, "RWMBV") == {"7A4", "RWM", "RWMBV", "6A8"}


class TestCycles:
    """Tests that cyclic succession data terminates and is reported."""

    def test_walks_terminate(self, cyclic):
        assert all_successors(cyclic, "D") == {"A", "B"}
        assert all_successors(cyclic, "A") == {"A", "B"}
        assert active_successors(cyclic, "D") == set()
        assert all_equivalent_org_codes(cyclic, "D") == {"A", "B", "D"}

    def test_cycle_is_logged(self, cyclic):
        with capture_logs() as logs:
            all_successors(cyclic, "A")
        warnings = [e for e in logs if e["event"] == "succession_cycle_detected"]
        assert len(warnings) == 1
        assert warnings[0]["log_level"] == "warning"
        assert warnings[0]["codes"] == ["A", "B"]

    def test_shared_ancestor_is_not_a_cycle(self, conn):
        with capture_logs() as logs:
            all_equivalent_org_codes(conn, "7A4")
            all_predecessors(conn, "7A4")
        assert not [e for e in logs if e["event"].endswith("cycle_detected")]

    def test_find_cycle_members(self):
        assert find_cycle_members([("A", "B"), ("B", "C")]) == set()
        assert find_cycle_members([("A", "B"), ("B", "A"), ("C", "A")]) == {"A", "B"}


# ─── Relationships ───────────────────────────────────────────────────────────

class TestRelationships:
    """Tests for parent and child closures."""

    def test_direct_children(self, conn):
        assert child_orgs(conn, "7A4") == {"7A4BV", "W95024"}

    def test_children_by_relationship_type(self, conn):
        assert child_orgs(conn, "7A4", relationship_types="RE6") == {"7A4BV"}
        assert child_orgs(conn, "7A4", relationship_types=["RE4", "RE6"]) == {"7A4BV", "W95024"}

    def test_children_by_role_type(self, conn):
        assert child_orgs(conn, "7A4", role_types="RO177") == {"W95024"}

    def test_active_children(self, conn):
        assert child_orgs(conn, "W95024") == {"W95624"}
        assert child_orgs(conn, "W95024", active=True) == set()
        assert child_orgs(conn, "W95024", active=True, role_types="RO177") == set()
        assert child_orgs(conn, "7A4", active=True, role_types="RO177") == {"W95024"}

    def test_all_children(self, conn):
        assert all_child_orgs(conn, "7A4") == {"7A4BV", "W95024", "W95624"}
        assert all_child_orgs(conn, "7A4", relationship_types="RE6") == {"7A4BV"}

    def test_parents(self, conn):
        assert parent_orgs(conn, "7A4BV") == {"7A4"}
        assert parent_orgs(conn, "7A4") == set()
        assert parent_orgs_batch(conn, ["7A4BV", "W95624"]) == {"7A4", "W95024"}
        assert parent_orgs(conn, "W95024", relationship_types="RE6") == set()

    def test_part_of(self, conn):
        assert part_of(conn, "7A4BV") == "7A4"
        assert part_of(conn, "w95024") == "7A4"
        assert part_of(conn, "7A4") is None

    def test_part_of_prefers_higher_ranked_relationship(self, store):
        store.write_batch([
            _org("SITE", parents=[("CCG", "RE4"), ("TRUST", "RE6"), ("DIV", "RE2"), ("OTHER", "RE5")]),
            _org("UNIT", parents=[("CCG", "RE4"), ("TRUST", "RE6")]),
            _org("PAIR", parents=[("ZED", "RE3"), ("ABC", "RE3")]),
            _org("LOOSE", parents=[("OTHER", "RE5")]),
        ])
        with store.connect() as conn:
            assert part_of(conn, "SITE") == "DIV"
            assert part_of(conn, "UNIT") == "TRUST"
            assert part_of(conn, "PAIR") == "ABC"
            assert part_of(conn, "LOOSE") is None

    def test_relationship_cycle_terminates(self, store):
        store.write_batch([
            _org("P", active=True, parents=[("Q", "RE6")]),
            _org("Q", active=True, parents=[("P", "RE6")]),
        ])
        with store.connect() as conn, capture_logs() as logs:
            assert all_child_orgs(conn, "P") == {"P", "Q"}
        assert [e["event"] for e in logs] == ["relationship_cycle_detected"]

    def test_orgs_with_primary_role(self, conn):
        codes = ["7A4", "7A4BV", "W95024", "W95624", "X24"]
        assert orgs_with_primary_role(conn, codes, "RO177") == {"W95024", "W95624"}
        assert orgs_with_primary_role(conn, codes, ["RO144", "RO198"]) == {"7A4", "7A4BV"}
        assert orgs_with_primary_role(conn, codes, "RO76") == set()
