"""Database models for the organisation reference data store."""

from orgdata.models.base import Base
from orgdata.models.organisation import ORGANISATION_ID_ROOT, Organisation
from orgdata.models.role import Role
from orgdata.models.edges import Relationship, Succession
from orgdata.models.release import CodeSystemEntry, Manifest, Release

__all__ = [
    "Base",
    "ORGANISATION_ID_ROOT",
    "Organisation",
    "Role",
    "Relationship",
    "Succession",
    "CodeSystemEntry",
    "Manifest",
    "Release",
]
