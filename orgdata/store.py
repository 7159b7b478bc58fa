"""Relational store for organisation reference data.

All writes go through `OrganisationStore`; reads take an open connection so
that callers can compose several queries on one connection. The store is
created with an explicit engine and there is no module-level instance.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Sequence

import structlog
from sqlalchemy import Connection, Engine, Table, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from orgdata.models import (
    ORGANISATION_ID_ROOT,
    Base,
    CodeSystemEntry,
    Manifest,
    Organisation,
    Relationship,
    Release,
    Role,
    Succession,
)
from orgdata.schemas.organisation import (
    CodeRecord,
    ExtendedOrganisation,
    ManifestRecord,
    OrganisationLink,
    OrganisationLocation,
    OrganisationRecord,
    OrganisationRole,
    OrganisationSummary,
    Period,
    ReleaseRecord,
)
from orgdata.services.pipeline import DEFAULT_BATCH_SIZE, ImportPipeline
from orgdata.services.postcodes import PostcodeDirectory
from orgdata.services.reader import (
    SUPPORTED_FORMAT_VERSION,
    Source,
    check_version,
    read_code_systems,
    read_manifest,
)

logger = structlog.get_logger()

SEARCH_TABLE = "organisation_search"
SEARCH_COLUMNS = ("code", "name", "address1", "address2", "town", "county", "postcode")

CREATE_SEARCH_TABLE = (
    f"CREATE VIRTUAL TABLE IF NOT EXISTS {SEARCH_TABLE} USING fts5("
    + ", ".join(SEARCH_COLUMNS)
    + ", content='organisation')"
)
REBUILD_SEARCH_TABLE = f"INSERT INTO {SEARCH_TABLE}({SEARCH_TABLE}) VALUES ('rebuild')"

organisation_table: Table = Organisation.__table__  # type: ignore[assignment]
role_table: Table = Role.__table__  # type: ignore[assignment]
relationship_table: Table = Relationship.__table__  # type: ignore[assignment]
succession_table: Table = Succession.__table__  # type: ignore[assignment]


class NamespaceError(Exception):
    """Raised when an organisation is identified under an unexpected root."""

    def __init__(self, code: str, root: str) -> None:
        self.code = code
        self.root = root
        super().__init__(
            f"Organisation '{code}' has identifier root '{root}'; expected '{ORGANISATION_ID_ROOT}'"
        )


def _upsert(conn: Connection, table: Table, rows: Sequence[dict[str, Any]], keys: Sequence[str]) -> None:
    """Insert rows, replacing every non-key column of rows that already exist."""
    if not rows:
        return
    stmt = sqlite_insert(table)
    updates = {c.name: stmt.excluded[c.name] for c in table.columns if c.name not in keys}
    conn.execute(stmt.on_conflict_do_update(index_elements=list(keys), set_=updates), list(rows))


# ─── Row mapping ────────────────────────────────────────────────────────────


def location_from_row(row: Any, distance: float | None = None) -> OrganisationLocation:
    return OrganisationLocation(
        address1=row.address1,
        address2=row.address2,
        town=row.town,
        county=row.county,
        postcode=row.postcode,
        country=row.country,
        uprn=row.uprn,
        northing=row.northing,
        easting=row.easting,
        distance=distance,
    )


def summary_from_row(row: Any, distance: float | None = None) -> OrganisationSummary:
    """Build an organisation summary from an `organisation` table row."""
    operational = None
    if row.operational_start is not None or row.operational_end is not None:
        operational = Period(start=row.operational_start, end=row.operational_end)
    return OrganisationSummary(
        code=row.code,
        root=ORGANISATION_ID_ROOT,
        name=row.name,
        record_class=row.record_class,
        active=bool(row.active),
        location=location_from_row(row, distance),
        operational=operational,
    )


def extend_summaries(conn: Connection, summaries: Sequence[OrganisationSummary]) -> list[ExtendedOrganisation]:
    """Attach roles and edges to organisation summaries.

    Issues four queries however many organisations are given.
    """
    if not summaries:
        return []
    codes = [s.code for s in summaries]

    roles: dict[str, list[OrganisationRole]] = {}
    for row in conn.execute(
        select(role_table).where(role_table.c.org_code.in_(codes)).order_by(role_table.c.id)
    ):
        roles.setdefault(row.org_code, []).append(OrganisationRole(
            role_type=row.role_type,
            is_primary=bool(row.is_primary),
            active=bool(row.active),
            start_date=row.start_date,
            end_date=row.end_date,
        ))

    relationships: dict[str, list[OrganisationLink]] = {}
    for row in conn.execute(
        select(relationship_table)
        .where(relationship_table.c.source_code.in_(codes))
        .order_by(relationship_table.c.id)
    ):
        relationships.setdefault(row.source_code, []).append(
            OrganisationLink(code=row.target_code, relationship_type=row.relationship_type)
        )

    successors: dict[str, list[OrganisationLink]] = {}
    for row in conn.execute(
        select(succession_table)
        .where(succession_table.c.predecessor_code.in_(codes))
        .order_by(succession_table.c.id)
    ):
        successors.setdefault(row.predecessor_code, []).append(
            OrganisationLink(code=row.successor_code, carried_primary_role=row.carried_primary_role)
        )

    predecessors: dict[str, list[OrganisationLink]] = {}
    for row in conn.execute(
        select(succession_table)
        .where(succession_table.c.successor_code.in_(codes))
        .order_by(succession_table.c.id)
    ):
        predecessors.setdefault(row.successor_code, []).append(
            OrganisationLink(code=row.predecessor_code, carried_primary_role=row.carried_primary_role)
        )

    extended = []
    for summary in summaries:
        org_roles = roles.get(summary.code, [])
        extended.append(ExtendedOrganisation(
            **summary.model_dump(),
            roles=org_roles,
            primary_role=next((r for r in org_roles if r.is_primary), None),
            relationships=relationships.get(summary.code, []),
            predecessors=predecessors.get(summary.code, []),
            successors=successors.get(summary.code, []),
        ))
    return extended


def fetch_organisations(conn: Connection, codes: Iterable[str]) -> list[ExtendedOrganisation]:
    """Fetch extended organisations by code, in the order first requested.

    Unknown codes are omitted.
    """
    wanted = list(dict.fromkeys(c.upper() for c in codes if c))
    if not wanted:
        return []
    rows = conn.execute(select(organisation_table).where(organisation_table.c.code.in_(wanted)))
    by_code = {row.code: summary_from_row(row) for row in rows}
    return extend_summaries(conn, [by_code[c] for c in wanted if c in by_code])


class OrganisationStore:
    """Read/write access to the organisation tables of one database."""

    def __init__(self, engine: Engine, postcodes: PostcodeDirectory | None = None) -> None:
        self.engine = engine
        self.postcodes = postcodes

    def connect(self) -> Connection:
        return self.engine.connect()

    def create_schema(self) -> None:
        """Create all tables, indexes and the full-text index if absent."""
        Base.metadata.create_all(self.engine)
        with self.engine.begin() as conn:
            conn.exec_driver_sql(CREATE_SEARCH_TABLE)
        logger.info("schema_created", url=self.engine.url.render_as_string(hide_password=True))

    # ─── Writes ──────────────────────────────────────────────────────────

    def _organisation_row(self, record: OrganisationRecord) -> dict[str, Any]:
        if record.root != ORGANISATION_ID_ROOT:
            raise NamespaceError(record.code, record.root)
        if record.is_reference:
            raise ValueError(f"Reference-only organisation '{record.code}' cannot be stored")
        location = record.location
        coords = None
        if self.postcodes is not None and location.postcode:
            coords = self.postcodes.coordinates(location.postcode)
        operational = record.operational or Period()
        return {
            "code": record.code,
            "name": record.name,
            "record_class": record.record_class,
            "active": record.active,
            "address1": location.address1,
            "address2": location.address2,
            "town": location.town,
            "county": location.county,
            "country": location.country,
            "postcode": location.postcode,
            "uprn": location.uprn,
            "northing": coords.northing if coords else None,
            "easting": coords.easting if coords else None,
            "operational_start": operational.start,
            "operational_end": operational.end,
        }

    def write_batch(self, batch: Sequence[OrganisationRecord]) -> int:
        """Upsert a batch of organisations and their edges in one transaction.

        Any failure rolls back the whole batch and propagates.
        """
        with self.engine.begin() as conn:
            orgs = [self._organisation_row(r) for r in batch]
            successions = [
                {
                    "id": s.unique_id,
                    "predecessor_code": r.code,
                    "successor_code": s.target_code,
                    "carried_primary_role": s.carried_primary_role,
                }
                for r in batch
                for s in r.successors
            ]
            relationships = [
                {
                    "id": rel.unique_id,
                    "source_code": r.code,
                    "relationship_type": rel.relationship_type,
                    "target_code": rel.target_code,
                }
                for r in batch
                for rel in r.relationships
            ]
            roles = [
                {
                    "id": role.unique_id,
                    "org_code": r.code,
                    "role_type": role.role_type,
                    "is_primary": role.is_primary,
                    "active": role.active,
                    "start_date": role.start_date,
                    "end_date": role.end_date,
                }
                for r in batch
                for role in r.roles
            ]
            _upsert(conn, organisation_table, orgs, ["code"])
            _upsert(conn, succession_table, successions, ["id"])
            _upsert(conn, relationship_table, relationships, ["id"])
            _upsert(conn, role_table, roles, ["id"])
        logger.debug("batch_written", organisations=len(orgs), roles=len(roles),
                     relationships=len(relationships), successions=len(successions))
        return len(orgs)

    def write_release(self, release: ReleaseRecord) -> None:
        with self.engine.begin() as conn:
            _upsert(conn, Release.__table__, [release.model_dump()], ["release_id"])  # type: ignore[arg-type]

    def write_manifests(self, manifests: Iterable[ManifestRecord]) -> None:
        """Record source manifests; a manifest already recorded is skipped."""
        table = Manifest.__table__
        with self.engine.begin() as conn:
            for manifest in manifests:
                exists = conn.execute(
                    select(table.c.id).where(
                        table.c.version == manifest.version,
                        table.c.publication_date == manifest.publication_date,
                        table.c.content_description == manifest.content_description,
                    )
                ).first()
                if exists is None:
                    conn.execute(table.insert().values(**manifest.model_dump()))

    def write_code_systems(self, codes: Sequence[CodeRecord]) -> None:
        with self.engine.begin() as conn:
            _upsert(conn, CodeSystemEntry.__table__, [c.model_dump() for c in codes],  # type: ignore[arg-type]
                    ["code_system_id", "code"])
        logger.info("code_systems_written", count=len(codes))

    def rebuild_search_index(self) -> None:
        """Repopulate the full-text index from the organisation table."""
        with self.engine.begin() as conn:
            conn.exec_driver_sql(REBUILD_SEARCH_TABLE)
        logger.info("search_index_rebuilt")

    def load(
        self,
        source: Source,
        release: ReleaseRecord | None = None,
        *,
        nthreads: int | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        supported_version: str = SUPPORTED_FORMAT_VERSION,
    ) -> int:
        """Import a complete source document and rebuild the search index.

        The manifest is checked before anything is written. Returns the number
        of organisations written.
        """
        manifest = read_manifest(source)
        check_version(manifest, supported_version)
        codes = read_code_systems(source)

        if release is not None:
            self.write_release(release)
        self.write_manifests([manifest])
        self.write_code_systems(codes)

        written = 0
        batches = 0
        pipeline = ImportPipeline(
            source, nthreads=nthreads, batch_size=batch_size, supported_version=supported_version
        )
        for batch in pipeline.batches():
            written += self.write_batch(batch)
            batches += 1

        self.rebuild_search_index()
        logger.info("load_complete", organisations=written, batches=batches,
                    content=manifest.content_description,
                    release=release.release_id if release else None)
        return written

    # ─── Reads ───────────────────────────────────────────────────────────

    def fetch(self, code: str) -> ExtendedOrganisation | None:
        """Fetch one organisation with its roles and edges, or None."""
        if not code:
            return None
        with self.connect() as conn:
            found = fetch_organisations(conn, [code])
        return found[0] if found else None

    def fetch_many(self, codes: Iterable[str]) -> list[ExtendedOrganisation]:
        with self.connect() as conn:
            return fetch_organisations(conn, codes)

    def count_organisations(self) -> int:
        with self.connect() as conn:
            return conn.execute(select(func.count()).select_from(organisation_table)).scalar_one()

    def random_codes(self, n: int) -> list[str]:
        """Return up to `n` organisation codes chosen at random."""
        with self.connect() as conn:
            return list(conn.execute(
                select(organisation_table.c.code).order_by(func.random()).limit(n)
            ).scalars())

    def code_systems(self, code_system_id: str | None = None) -> list[CodeRecord]:
        table = CodeSystemEntry.__table__
        stmt = select(table).order_by(table.c.code_system_id, table.c.code)
        if code_system_id is not None:
            stmt = stmt.where(table.c.code_system_id == code_system_id)
        with self.connect() as conn:
            return [
                CodeRecord(code_system_id=row.code_system_id, code=row.code, display_name=row.display_name)
                for row in conn.execute(stmt)
            ]

    def latest_release(self) -> ReleaseRecord | None:
        table = Release.__table__
        with self.connect() as conn:
            row = conn.execute(
                select(table).order_by(table.c.release_date.desc(), table.c.loaded_at.desc()).limit(1)
            ).first()
        if row is None:
            return None
        return ReleaseRecord(release_id=row.release_id, release_date=row.release_date)

    def manifests(self) -> list[ManifestRecord]:
        table = Manifest.__table__
        with self.connect() as conn:
            return [
                ManifestRecord(
                    version=row.version,
                    publication_type=row.publication_type,
                    publication_date=row.publication_date,
                    content_description=row.content_description,
                    record_count=row.record_count,
                )
                for row in conn.execute(select(table).order_by(table.c.id))
            ]

    def is_newer_release(self, release_date: date) -> bool:
        """Whether a release dated `release_date` is newer than any loaded."""
        latest = self.latest_release()
        return latest is None or release_date > latest.release_date
