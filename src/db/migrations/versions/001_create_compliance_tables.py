"""Create compliance_items, documents and risk_scores tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

RISK_LEVELS = "risk_level IN ('low', 'medium', 'high', 'critical')"


def upgrade() -> None:
    op.create_table(
        "compliance_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("owner", sa.String(255), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("risk_level", sa.String(20), nullable=False, server_default="low"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(RISK_LEVELS, name="ck_compliance_items_risk_level"),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'expired')",
            name="ck_compliance_items_status",
        ),
    )
    op.create_index("ix_compliance_items_owner", "compliance_items", ["owner"])
    op.create_index("ix_compliance_items_risk_level", "compliance_items", ["risk_level"])
    op.create_index("ix_compliance_items_status", "compliance_items", ["status"])
    op.create_index("ix_compliance_items_due_date", "compliance_items", ["due_date"])

    op.create_table(
        "documents",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("owner", sa.String(255), nullable=False),
        sa.Column("filename", sa.String(500), nullable=False),
        sa.Column("storage_path", sa.String(1000), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=False),
        sa.Column("extracted_text", sa.Text(), nullable=True),
        sa.Column(
            "ai_analysis",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=True,
        ),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_documents_owner", "documents", ["owner"])
    op.create_index("ix_documents_uploaded_at", "documents", ["uploaded_at"])

    op.create_table(
        "risk_scores",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "compliance_item_id",
            sa.Uuid(),
            sa.ForeignKey("compliance_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "document_id",
            sa.Uuid(),
            sa.ForeignKey("documents.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("owner", sa.String(255), nullable=False),
        sa.Column("risk_category", sa.String(100), nullable=False),
        sa.Column("risk_score", sa.Integer(), nullable=False),
        sa.Column("risk_level", sa.String(20), nullable=False),
        sa.Column("assessment_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("assessed_by", sa.String(500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("ai_confidence", sa.Float(), nullable=True),
        sa.Column("ai_reasoning", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "risk_score >= 0 AND risk_score <= 100", name="ck_risk_scores_risk_score_range"
        ),
        sa.CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 1)",
            name="ck_risk_scores_ai_confidence_range",
        ),
        sa.CheckConstraint(RISK_LEVELS, name="ck_risk_scores_risk_level"),
    )
    op.create_index("ix_risk_scores_compliance_item_id", "risk_scores", ["compliance_item_id"])
    op.create_index("ix_risk_scores_document_id", "risk_scores", ["document_id"])
    op.create_index("ix_risk_scores_owner", "risk_scores", ["owner"])
    op.create_index("ix_risk_scores_risk_level", "risk_scores", ["risk_level"])
    op.create_index("ix_risk_scores_assessment_date", "risk_scores", ["assessment_date"])
    op.create_index(
        "ix_risk_scores_item_category_date",
        "risk_scores",
        ["compliance_item_id", "risk_category", "assessment_date"],
    )


def downgrade() -> None:
    op.drop_table("risk_scores")
    op.drop_table("documents")
    op.drop_table("compliance_items")
