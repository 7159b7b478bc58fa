"""Postcode directory: resolves a postcode to national grid coordinates.

The store only needs `coordinates(postcode)`; any object providing it can be
passed in. `MappingPostcodeDirectory` is an in-memory implementation that can
be loaded from an NHS Postcode Directory (NHSPD) CSV extract.
"""

from __future__ import annotations

import csv
import math
import re
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Mapping, Protocol

import structlog
from pyproj import Transformer

from orgdata.schemas.organisation import Coordinates

logger = structlog.get_logger()

# NHSPD column names
NHSPD_PCD2 = "PCD2"
NHSPD_PCDS = "PCDS"
NHSPD_NORTHING = "OSNRTH1M"
NHSPD_EASTING = "OSEAST1M"

# Column order of the headerless NHSPD "full" extract
NHSPD_FIELD_NAMES = [
    "PCD2", "PCDS", "DOINTR", "DOTERM", "OSEAST100M",
    "OSNRTH100M", "OSCTY", "ODSLAUA", "OSLAUA", "OSWARD",
    "USERTYPE", "OSGRDIND", "CTRY", "OSHLTHAU", "RGN",
    "OLDHA", "NHSER", "CCG", "PSED", "CENED",
    "EDIND", "WARD98", "OA01", "NHSRLO", "HRO",
    "LSOA01", "UR01IND", "MSOA01", "CANNET", "SCN",
    "OSHAPREV", "OLDPCT", "OLDHRO", "PCON", "CANREG",
    "PCT", "OSEAST1M", "OSNRTH1M", "OA11", "LSOA11",
    "MSOA11", "CALNCV", "STP",
]

_WHITESPACE = re.compile(r"\s+")

# WGS84 latitude/longitude and the British National Grid
WGS84 = "EPSG:4326"
BRITISH_NATIONAL_GRID = "EPSG:27700"


class PostcodeDirectory(Protocol):
    def coordinates(self, postcode: str) -> Coordinates | None:
        ...


def normalize_postcode(postcode: str) -> str:
    """Upper-case, with outward and inward codes separated by one space."""
    return _WHITESPACE.sub(" ", postcode.strip()).upper()


def distance_between(a: Coordinates, b: Coordinates) -> float:
    """Planar distance in metres between two grid references."""
    return math.hypot(a.northing - b.northing, a.easting - b.easting)


@lru_cache(maxsize=1)
def _wgs84_to_grid() -> Transformer:
    return Transformer.from_crs(WGS84, BRITISH_NATIONAL_GRID, always_xy=True)


def grid_from_wgs84(latitude: float, longitude: float) -> Coordinates:
    """National grid reference for a WGS84 position, rounded to the metre."""
    easting, northing = _wgs84_to_grid().transform(longitude, latitude)
    if not (math.isfinite(easting) and math.isfinite(northing)):
        raise ValueError(f"No grid reference for latitude {latitude}, longitude {longitude}")
    return Coordinates(northing=round(northing), easting=round(easting))


class MappingPostcodeDirectory:
    """Postcode directory held in a dictionary."""

    def __init__(self, entries: Mapping[str, Coordinates] | None = None) -> None:
        self._entries: dict[str, Coordinates] = {}
        for postcode, coords in (entries or {}).items():
            self.add(postcode, coords)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, postcode: object) -> bool:
        return isinstance(postcode, str) and normalize_postcode(postcode) in self._entries

    def add(self, postcode: str, coords: Coordinates) -> None:
        self._entries[normalize_postcode(postcode)] = coords

    def coordinates(self, postcode: str) -> Coordinates | None:
        if not postcode:
            return None
        return self._entries.get(normalize_postcode(postcode))

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, str]]) -> MappingPostcodeDirectory:
        """Build from NHSPD rows; rows without grid coordinates are skipped."""
        directory = cls()
        skipped = 0
        for row in rows:
            postcode = row.get(NHSPD_PCDS) or row.get(NHSPD_PCD2)
            northing = (row.get(NHSPD_NORTHING) or "").strip()
            easting = (row.get(NHSPD_EASTING) or "").strip()
            if not postcode or not northing.isdigit() or not easting.isdigit():
                skipped += 1
                continue
            directory.add(postcode, Coordinates(northing=int(northing), easting=int(easting)))
        logger.info("postcodes_loaded", count=len(directory), skipped=skipped)
        return directory

    @classmethod
    def from_csv(cls, path: str | Path) -> MappingPostcodeDirectory:
        """Load an NHSPD CSV file, with or without a header row."""
        with open(path, newline="", encoding="utf-8-sig") as f:
            first = f.readline()
            f.seek(0)
            header = [c.strip().strip("\"").upper() for c in first.split(",")]
            has_header = NHSPD_PCD2 in header or NHSPD_PCDS in header
            if has_header:
                reader = csv.DictReader(f)
                rows = ({k.strip().upper(): v for k, v in row.items() if k} for row in reader)
            else:
                reader = csv.DictReader(f, fieldnames=NHSPD_FIELD_NAMES)
                rows = (row for row in reader)
            return cls.from_rows(rows)
