"""lender marketplace tables

Revision ID: 20261019_lender_marketplace
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_lender_marketplace"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "funding_applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("term_months", sa.Integer(), nullable=True),
        sa.Column("funding_type", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="draft"),
        sa.Column(
            "financing_needs_details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_funding_app_amount_nonneg"),
    )
    op.create_index("ix_funding_applications_company_id", "funding_applications", ["company_id"])
    op.create_index("ix_funding_applications_user_id", "funding_applications", ["user_id"])
    op.create_index("ix_funding_applications_status", "funding_applications", ["status"])

    op.create_table(
        "lenders",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "funding_categories",
            postgresql.ARRAY(sa.String(length=50)),
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        *_timestamps(),
    )
    op.create_index("ix_lenders_type", "lenders", ["type"])
    op.create_index("ix_lenders_is_active", "lenders", ["is_active"])

    op.create_table(
        "lender_applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("funding_application_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("lender_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("lender_reference", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="pending"),
        sa.Column("next_poll_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_polled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_details", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "raw_response_data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["funding_application_id"], ["funding_applications.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["lender_id"], ["lenders.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("lender_id", "lender_reference", name="uq_lender_app_reference"),
    )
    op.create_index("ix_lender_app_pair", "lender_applications", ["funding_application_id", "lender_id"])
    op.create_index("ix_lender_applications_lender_id", "lender_applications", ["lender_id"])
    op.create_index("ix_lender_applications_lender_reference", "lender_applications", ["lender_reference"])
    op.create_index("ix_lender_applications_status", "lender_applications", ["status"])
    op.create_index("ix_lender_applications_next_poll_at", "lender_applications", ["next_poll_at"])

    op.create_table(
        "financing_offers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("lender_application_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("funding_application_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("lender_offer_reference", sa.String(length=255), nullable=False),
        sa.Column("product", sa.String(length=50), nullable=True),
        sa.Column("term_months", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("monthly_fee", sa.Numeric(10, 4), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="offered"),
        sa.Column(
            "raw_data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["lender_application_id"], ["lender_applications.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["funding_application_id"], ["funding_applications.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "lender_application_id", "lender_offer_reference", name="uq_financing_offer_reference"
        ),
    )
    op.create_index(
        "ix_financing_offers_lender_application_id", "financing_offers", ["lender_application_id"]
    )
    op.create_index(
        "ix_financing_offers_funding_application_id", "financing_offers", ["funding_application_id"]
    )

    op.create_table(
        "lender_application_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("lender_application_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("lender_reference", sa.String(length=255), nullable=True),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("event", sa.String(length=100), nullable=False),
        sa.Column("outcome", sa.String(length=30), nullable=False),
        sa.Column(
            "payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["lender_application_id"], ["lender_applications.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_lender_application_events_lender_application_id",
        "lender_application_events",
        ["lender_application_id"],
    )
    op.create_index(
        "ix_lender_application_events_lender_reference",
        "lender_application_events",
        ["lender_reference"],
    )

    op.create_table(
        "company_documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=False, server_default="application/pdf"),
        sa.Column("content", sa.LargeBinary(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_company_documents_company_id", "company_documents", ["company_id"])

    op.create_table(
        "lender_document_uploads",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("lender_application_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("document_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("document_name", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["lender_application_id"], ["lender_applications.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_lender_document_uploads_lender_application_id",
        "lender_document_uploads",
        ["lender_application_id"],
    )


def downgrade() -> None:
    op.drop_table("lender_document_uploads")
    op.drop_table("company_documents")
    op.drop_table("lender_application_events")
    op.drop_table("financing_offers")
    op.drop_table("lender_applications")
    op.drop_table("lenders")
    op.drop_table("funding_applications")
