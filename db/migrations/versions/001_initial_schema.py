"""Initial schema: crm.entity_documents, cache.request_cache_entries.

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS crm")
    op.execute("CREATE SCHEMA IF NOT EXISTS cache")

    # ─── CRM Schema ──────────────────────────────────────────────────────────

    op.create_table(
        "entity_documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("collection_path", sa.Text, nullable=False),
        sa.Column("doc_id", sa.Text, nullable=False),
        sa.Column("data", sa.JSON, nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("collection_path", "doc_id", name="uq_entity_document_path"),
        schema="crm",
    )
    op.create_index(
        "ix_entity_documents_collection_path",
        "entity_documents",
        ["collection_path"],
        schema="crm",
    )

    # ─── Cache Schema ────────────────────────────────────────────────────────

    op.create_table(
        "request_cache_entries",
        sa.Column("cache_key", sa.Text, primary_key=True),
        sa.Column("owner_id", sa.Text, nullable=True),
        sa.Column("value", sa.JSON, nullable=True),
        sa.Column("stored_at", sa.Float, nullable=False),
        schema="cache",
    )


def downgrade() -> None:
    op.drop_table("request_cache_entries", schema="cache")
    op.drop_index("ix_entity_documents_collection_path", table_name="entity_documents", schema="crm")
    op.drop_table("entity_documents", schema="crm")
