"""Initial schema: organisation reference data tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Release metadata
    op.create_table(
        "release",
        sa.Column("release_id", sa.String(100), primary_key=True),
        sa.Column("release_date", sa.Date, nullable=False),
        sa.Column("loaded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "manifest",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("version", sa.String(20), nullable=False),
        sa.Column("publication_type", sa.String(50), nullable=False),
        sa.Column("publication_date", sa.Date, nullable=False),
        sa.Column("content_description", sa.Text, nullable=False),
        sa.Column("record_count", sa.Integer, nullable=True),
    )
    op.create_table(
        "code_system",
        sa.Column("code_system_id", sa.String(64), primary_key=True),
        sa.Column("code", sa.String(16), primary_key=True),
        sa.Column("display_name", sa.Text, nullable=False),
    )

    # Organisations
    op.create_table(
        "organisation",
        sa.Column("code", sa.String(12), primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("record_class", sa.String(8), nullable=False),
        sa.Column("active", sa.Boolean, nullable=False),
        sa.Column("address1", sa.Text, nullable=True),
        sa.Column("address2", sa.Text, nullable=True),
        sa.Column("town", sa.Text, nullable=True),
        sa.Column("county", sa.Text, nullable=True),
        sa.Column("country", sa.Text, nullable=True),
        sa.Column("postcode", sa.String(10), nullable=True),
        sa.Column("uprn", sa.BigInteger, nullable=True),
        sa.Column("northing", sa.Integer, nullable=True),
        sa.Column("easting", sa.Integer, nullable=True),
        sa.Column("operational_start", sa.Date, nullable=True),
        sa.Column("operational_end", sa.Date, nullable=True),
    )
    op.create_index("ix_organisation_coords", "organisation", ["northing", "easting"])
    op.create_index("ix_organisation_name", "organisation", [sa.text("lower(name)")])

    # Roles
    op.create_table(
        "role",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column("org_code", sa.String(12), sa.ForeignKey("organisation.code"), nullable=False),
        sa.Column("role_type", sa.String(12), nullable=False),
        sa.Column("is_primary", sa.Boolean, nullable=False),
        sa.Column("active", sa.Boolean, nullable=False),
        sa.Column("start_date", sa.Date, nullable=True),
        sa.Column("end_date", sa.Date, nullable=True),
    )
    op.create_index("ix_role_org_code", "role", ["org_code"])
    op.create_index("ix_role_role_type", "role", ["role_type"])

    # Edges
    op.create_table(
        "relationship",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column("source_code", sa.String(12), sa.ForeignKey("organisation.code"), nullable=False),
        sa.Column("relationship_type", sa.String(12), nullable=False),
        sa.Column("target_code", sa.String(12), sa.ForeignKey("organisation.code"), nullable=False),
    )
    op.create_index("ix_relationship_source_code", "relationship", ["source_code"])
    op.create_index("ix_relationship_target_code", "relationship", ["target_code"])
    op.create_index("ix_relationship_children", "relationship", ["target_code", "relationship_type"])

    op.create_table(
        "succession",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column("predecessor_code", sa.String(12), sa.ForeignKey("organisation.code"), nullable=False),
        sa.Column("successor_code", sa.String(12), sa.ForeignKey("organisation.code"), nullable=False),
        sa.Column("carried_primary_role", sa.String(12), nullable=True),
    )
    op.create_index("ix_succession_predecessor_code", "succession", ["predecessor_code"])
    op.create_index("ix_succession_successor_code", "succession", ["successor_code"])

    # Full-text index over names and addresses, filled after each load
    op.execute(
        "CREATE VIRTUAL TABLE organisation_search USING fts5("
        "code, name, address1, address2, town, county, postcode, content='organisation')"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS organisation_search")
    op.drop_table("succession")
    op.drop_table("relationship")
    op.drop_table("role")
    op.drop_table("organisation")
    op.drop_table("code_system")
    op.drop_table("manifest")
    op.drop_table("release")
