"""Organisation service: one handle over the store, closures and search."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

import structlog
from sqlalchemy import text

from orgdata.config import Settings
from orgdata.db import engine_from_settings
from orgdata.schemas.health import DataStatus
from orgdata.schemas.organisation import Coordinates, ExtendedOrganisation, ReleaseRecord
from orgdata.services import closure
from orgdata.services.postcodes import MappingPostcodeDirectory, PostcodeDirectory
from orgdata.services.reader import Source
from orgdata.services.search import SearchParams, search
from orgdata.store import OrganisationStore

logger = structlog.get_logger()


class OrganisationService:
    """Read access to a loaded store, plus loading.

    Each call takes its own pooled connection, so one instance can be shared
    by concurrent readers.
    """

    def __init__(self, store: OrganisationStore, postcodes: PostcodeDirectory | None = None) -> None:
        self.store = store
        self.postcodes = postcodes if postcodes is not None else store.postcodes
        self.settings: Settings | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> OrganisationService:
        postcodes = None
        if settings.postcode_file:
            postcodes = MappingPostcodeDirectory.from_csv(settings.postcode_file)
        store = OrganisationStore(engine_from_settings(settings), postcodes)
        store.create_schema()
        service = cls(store, postcodes)
        service.settings = settings
        logger.info(
            "service_ready",
            database=store.engine.url.render_as_string(hide_password=True),
            postcodes=len(postcodes) if postcodes else 0,
        )
        return service

    def load(self, source: Source, release: ReleaseRecord | None = None) -> int:
        """Import a source document using the configured pipeline settings."""
        if self.settings is None:
            return self.store.load(source, release)
        return self.store.load(
            source,
            release,
            nthreads=self.settings.worker_count,
            batch_size=self.settings.batch_size,
            supported_version=self.settings.supported_format_version,
        )

    def ping(self) -> None:
        """Raise if the database cannot be reached."""
        with self.store.connect() as conn:
            conn.execute(text("SELECT 1"))

    def data_status(self) -> DataStatus:
        release = self.store.latest_release()
        return DataStatus(
            organisations=self.store.count_organisations(),
            release_id=release.release_id if release else None,
            release_date=release.release_date if release else None,
        )

    def coordinates(self, postcode: str) -> Coordinates | None:
        if self.postcodes is None:
            return None
        return self.postcodes.coordinates(postcode)

    def fetch(self, code: str) -> ExtendedOrganisation | None:
        return self.store.fetch(code)

    def fetch_many(self, codes: Iterable[str]) -> list[ExtendedOrganisation]:
        return self.store.fetch_many(codes)

    def search(self, params: SearchParams | Mapping[str, Any]) -> Any:
        if self.settings is not None and isinstance(params, Mapping) and params.get("geo"):
            geo = dict(params["geo"])
            geo.setdefault("range_metres", self.settings.default_search_range_metres)
            params = {**params, "geo": geo}
        with self.store.connect() as conn:
            return search(conn, params, self.postcodes)

    def active_successors(self, code: str) -> set[str]:
        with self.store.connect() as conn:
            return closure.active_successors(conn, code)

    def equivalents(self, code: str, *, complete: bool = True) -> set[str]:
        """Equivalent codes; `complete` gives the whole succession component."""
        with self.store.connect() as conn:
            if complete:
                return closure.all_equivalent_org_codes(conn, code)
            return closure.equivalent_org_codes(conn, code)

    def children(
        self,
        code: str,
        *,
        recursive: bool = False,
        active: bool = False,
        relationship_types: list[str] | None = None,
        role_types: list[str] | None = None,
    ) -> set[str]:
        with self.store.connect() as conn:
            if recursive:
                return closure.all_child_orgs(conn, code, relationship_types=relationship_types)
            return closure.child_orgs(
                conn, code, active=active,
                relationship_types=relationship_types, role_types=role_types,
            )

    def parents(self, code: str, *, relationship_types: list[str] | None = None) -> set[str]:
        with self.store.connect() as conn:
            return closure.parent_orgs(conn, code, relationship_types=relationship_types)

    def part_of(self, code: str) -> str | None:
        with self.store.connect() as conn:
            return closure.part_of(conn, code)
