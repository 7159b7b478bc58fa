"""Graph closures over succession and relationship edges.

Every closure is a breadth-first walk with a seen-set, issuing one query per
frontier level. The single-code form of each function is the batch form
applied to one code, so the two always agree. Succession data is expected to
be acyclic; a cycle ends the walk and is logged as a data-quality warning.
"""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Callable, Iterable, Iterator

import structlog
from sqlalchemy import Connection, select

from orgdata.models import Organisation, Relationship, Role, Succession

logger = structlog.get_logger()

# Keeps each IN (...) list below SQLite's bound-parameter limit.
MAX_IN_PARAMS = 10000

# Relationship types naming what an organisation is part of, best first:
# subdivision, directed by, operated by, commissioned by.
PART_OF_PRIORITY = ("RE2", "RE3", "RE6", "RE4")

Edge = tuple[str, str]
EdgeQuery = Callable[[Connection, list[str]], Iterable[Edge]]


def _codes(codes: Iterable[str] | str) -> list[str]:
    if isinstance(codes, str):
        codes = [codes]
    return list(dict.fromkeys(c.upper() for c in codes if c))


def _types(types: Iterable[str] | str | None) -> list[str] | None:
    if types is None:
        return None
    if isinstance(types, str):
        return [types]
    return list(types)


def _chunks(codes: list[str]) -> Iterator[list[str]]:
    for i in range(0, len(codes), MAX_IN_PARAMS):
        yield codes[i:i + MAX_IN_PARAMS]


def find_cycle_members(edges: Iterable[Edge]) -> set[str]:
    """Return the nodes left over after a topological sort, i.e. on or behind a cycle."""
    out: dict[str, set[str]] = defaultdict(set)
    indegree: dict[str, int] = defaultdict(int)
    for src, dst in set(edges):
        out[src].add(dst)
        indegree[dst] += 1
        indegree.setdefault(src, 0)
    queue = deque(n for n, d in indegree.items() if d == 0)
    while queue:
        node = queue.popleft()
        for nxt in out[node]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                queue.append(nxt)
        del indegree[node]
    return set(indegree)


def _walk(
    conn: Connection,
    starts: list[str],
    edge_query: EdgeQuery,
    *,
    expand: Callable[[str], bool] | None = None,
    cycle_event: str | None = None,
) -> set[str]:
    """Codes reachable from `starts` along edges returned by `edge_query`.

    A reached code is walked further only when `expand` allows it.
    """
    reached: set[str] = set()
    expanded = set(starts)
    frontier = list(starts)
    traversed: list[Edge] = []
    revisited = False

    while frontier:
        next_frontier: list[str] = []
        for chunk in _chunks(frontier):
            for src, dst in edge_query(conn, chunk):
                traversed.append((src, dst))
                if dst in reached or dst in expanded:
                    revisited = True
                reached.add(dst)
                if dst not in expanded and (expand is None or expand(dst)):
                    expanded.add(dst)
                    next_frontier.append(dst)
        frontier = next_frontier

    if revisited and cycle_event is not None:
        members = find_cycle_members(traversed)
        if members:
            logger.warning(cycle_event, start=starts[:10], codes=sorted(members)[:20])
    return reached


# ─── Edge queries ───────────────────────────────────────────────────────────


def _successor_edges(conn: Connection, codes: list[str]) -> Iterable[Edge]:
    return conn.execute(
        select(Succession.predecessor_code, Succession.successor_code)
        .where(Succession.predecessor_code.in_(codes))
    ).tuples()


def _predecessor_edges(conn: Connection, codes: list[str]) -> Iterable[Edge]:
    return conn.execute(
        select(Succession.successor_code, Succession.predecessor_code)
        .where(Succession.successor_code.in_(codes))
    ).tuples()


def _succession_edges(conn: Connection, codes: list[str]) -> Iterable[Edge]:
    return [*_successor_edges(conn, codes), *_predecessor_edges(conn, codes)]


def _child_edges(relationship_types: list[str] | None) -> EdgeQuery:
    def query(conn: Connection, codes: list[str]) -> Iterable[Edge]:
        stmt = select(Relationship.target_code, Relationship.source_code).where(
            Relationship.target_code.in_(codes)
        )
        if relationship_types is not None:
            stmt = stmt.where(Relationship.relationship_type.in_(relationship_types))
        return conn.execute(stmt).tuples()
    return query


def _active_codes(conn: Connection, codes: Iterable[str]) -> set[str]:
    active: set[str] = set()
    for chunk in _chunks(list(codes)):
        active.update(conn.execute(
            select(Organisation.code).where(Organisation.code.in_(chunk), Organisation.active.is_(True))
        ).scalars())
    return active


# ─── Succession ─────────────────────────────────────────────────────────────


def all_predecessors_batch(conn: Connection, codes: Iterable[str]) -> set[str]:
    """Every organisation that any of `codes` transitively succeeded."""
    return _walk(conn, _codes(codes), _predecessor_edges, cycle_event="succession_cycle_detected")


def all_predecessors(conn: Connection, code: str) -> set[str]:
    return all_predecessors_batch(conn, [code])


def all_successors_batch(conn: Connection, codes: Iterable[str]) -> set[str]:
    """Every organisation that transitively succeeded any of `codes`."""
    return _walk(conn, _codes(codes), _successor_edges, cycle_event="succession_cycle_detected")


def all_successors(conn: Connection, code: str) -> set[str]:
    return all_successors_batch(conn, [code])


def active_successors_batch(conn: Connection, codes: Iterable[str]) -> set[str]:
    """The active organisations that currently stand for `codes`.

    An active organisation stands for itself. An inactive one is followed
    through its successors until active organisations are reached; those are
    not followed further. An inactive organisation without an active
    successor contributes nothing.
    """
    starts = _codes(codes)
    known_active = _active_codes(conn, starts)
    inactive_starts = [c for c in starts if c not in known_active]
    result = set(known_active)
    if not inactive_starts:
        return result

    active: set[str] = set()

    def query(conn: Connection, frontier: list[str]) -> Iterable[Edge]:
        edges = list(_successor_edges(conn, frontier))
        active.update(_active_codes(conn, {dst for _, dst in edges}))
        return edges

    reached = _walk(
        conn, inactive_starts, query,
        expand=lambda code: code not in active,
        cycle_event="succession_cycle_detected",
    )
    return result | (reached & active)


def active_successors(conn: Connection, code: str) -> set[str]:
    return active_successors_batch(conn, [code])


def equivalent_org_codes_batch(conn: Connection, codes: Iterable[str]) -> set[str]:
    """`codes` together with all their predecessors and successors.

    The result depends on where the walk starts: a successor's equivalents
    include every predecessor of its own, which a predecessor's may not.
    """
    starts = _codes(codes)
    return set(starts) | all_predecessors_batch(conn, starts) | all_successors_batch(conn, starts)


def equivalent_org_codes(conn: Connection, code: str) -> set[str]:
    return equivalent_org_codes_batch(conn, [code])


def all_equivalent_org_codes_batch(conn: Connection, codes: Iterable[str]) -> set[str]:
    """Every organisation connected to `codes` by succession in either direction.

    Any member of a succession chain yields the same set.
    """
    starts = _codes(codes)
    return set(starts) | _walk(conn, starts, _succession_edges)


def all_equivalent_org_codes(conn: Connection, code: str) -> set[str]:
    return all_equivalent_org_codes_batch(conn, [code])


# ─── Relationships ──────────────────────────────────────────────────────────


def child_orgs_batch(
    conn: Connection,
    parents: Iterable[str],
    *,
    active: bool = False,
    relationship_types: Iterable[str] | str | None = None,
    role_types: Iterable[str] | str | None = None,
) -> set[str]:
    """Organisations directly related to any of `parents`.

    With `role_types`, children must hold one of those roles, and with
    `active` as well that role must be active. With `active` alone the child
    organisation itself must be active.
    """
    codes = _codes(parents)
    rel_types = _types(relationship_types)
    roles = _types(role_types)
    result: set[str] = set()
    for chunk in _chunks(codes):
        stmt = select(Relationship.source_code).distinct().where(Relationship.target_code.in_(chunk))
        if rel_types is not None:
            stmt = stmt.where(Relationship.relationship_type.in_(rel_types))
        if roles is not None:
            stmt = stmt.join(Role, Role.org_code == Relationship.source_code).where(Role.role_type.in_(roles))
            if active:
                stmt = stmt.where(Role.active.is_(True))
        elif active:
            stmt = stmt.join(Organisation, Organisation.code == Relationship.source_code).where(
                Organisation.active.is_(True)
            )
        result.update(conn.execute(stmt).scalars())
    return result


def child_orgs(conn: Connection, parent: str, **kwargs) -> set[str]:
    return child_orgs_batch(conn, [parent], **kwargs)


def all_child_orgs_batch(
    conn: Connection,
    parents: Iterable[str],
    *,
    relationship_types: Iterable[str] | str | None = None,
) -> set[str]:
    """Organisations transitively related to any of `parents`."""
    return _walk(
        conn, _codes(parents), _child_edges(_types(relationship_types)),
        cycle_event="relationship_cycle_detected",
    )


def all_child_orgs(
    conn: Connection, parent: str, *, relationship_types: Iterable[str] | str | None = None
) -> set[str]:
    return all_child_orgs_batch(conn, [parent], relationship_types=relationship_types)


def parent_orgs_batch(
    conn: Connection,
    codes: Iterable[str],
    *,
    relationship_types: Iterable[str] | str | None = None,
) -> set[str]:
    """Targets of the relationships held by any of `codes`."""
    rel_types = _types(relationship_types)
    result: set[str] = set()
    for chunk in _chunks(_codes(codes)):
        stmt = select(Relationship.target_code).distinct().where(Relationship.source_code.in_(chunk))
        if rel_types is not None:
            stmt = stmt.where(Relationship.relationship_type.in_(rel_types))
        result.update(conn.execute(stmt).scalars())
    return result


def parent_orgs(
    conn: Connection, code: str, *, relationship_types: Iterable[str] | str | None = None
) -> set[str]:
    return parent_orgs_batch(conn, [code], relationship_types=relationship_types)


def part_of(conn: Connection, code: str) -> str | None:
    """The single parent that `code` is best described as part of.

    Relationships are ranked by `PART_OF_PRIORITY`; ties go to the lowest
    target code. Returns None when no ranked relationship exists.
    """
    rows = conn.execute(
        select(Relationship.relationship_type, Relationship.target_code).where(
            Relationship.source_code == code.upper(),
            Relationship.relationship_type.in_(PART_OF_PRIORITY),
        )
    ).all()
    if not rows:
        return None
    _, target = min(rows, key=lambda row: (PART_OF_PRIORITY.index(row[0]), row[1]))
    return target


def orgs_with_primary_role(
    conn: Connection, codes: Iterable[str], role_types: Iterable[str] | str
) -> set[str]:
    """The subset of `codes` whose primary role is one of `role_types`."""
    roles = _types(role_types) or []
    result: set[str] = set()
    for chunk in _chunks(_codes(codes)):
        result.update(conn.execute(
            select(Role.org_code).distinct().where(
                Role.org_code.in_(chunk), Role.is_primary.is_(True), Role.role_type.in_(roles)
            )
        ).scalars())
    return result
