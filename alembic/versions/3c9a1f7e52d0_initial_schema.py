"""Initial schema

Revision ID: 3c9a1f7e52d0
Revises: -
Create Date: 2026-10-19

Creates all tables matching the current SQLAlchemy models and the sequence
backing service-account client ids.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "3c9a1f7e52d0"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    op.execute(sa.schema.CreateSequence(sa.Sequence("client_sequence", start=1)))

    # ── companies ─────────────────────────────────────────────────────────
    op.create_table(
        "companies",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("business_partner_number", sa.String(20), nullable=True),
        _created_at(),
    )

    # ── identities (company users and service accounts) ───────────────────
    op.create_table(
        "identities",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "company_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("companies.id"),
            nullable=False,
        ),
        sa.Column("user_status", sa.String(63), nullable=False),
        sa.Column("identity_type", sa.String(63), nullable=False),
        sa.Column("user_entity_id", sa.String(36), nullable=True),
        _created_at(),
    )
    op.create_index("ix_identities_company_id", "identities", ["company_id"])
    op.create_index(
        "ix_identities_user_entity_id", "identities", ["user_entity_id"], unique=True
    )

    op.create_table(
        "company_users",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("identities.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("firstname", sa.String(255), nullable=True),
        sa.Column("lastname", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        _created_at("updated_at"),
    )

    # ── roles ─────────────────────────────────────────────────────────────
    op.create_table(
        "user_roles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("client_client_id", sa.String(255), nullable=False),
        sa.Column("user_role", sa.String(255), nullable=False),
        sa.UniqueConstraint("client_client_id", "user_role"),
    )

    op.create_table(
        "identity_assigned_roles",
        sa.Column(
            "identity_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("identities.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_role_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("user_roles.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        _created_at(),
    )

    # ── service accounts ──────────────────────────────────────────────────
    op.create_table(
        "company_service_accounts",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("identities.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("client_client_id", sa.String(255), nullable=True),
        sa.Column("service_account_type", sa.String(63), nullable=False),
        sa.Column("service_account_kind", sa.String(63), nullable=False),
        sa.Column("offer_subscription_id", postgresql.UUID(as_uuid=True), nullable=True),
    )
    op.create_index(
        "ix_company_service_accounts_client_client_id",
        "company_service_accounts",
        ["client_client_id"],
    )

    # ── processes ─────────────────────────────────────────────────────────
    op.create_table(
        "processes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("process_type", sa.String(63), nullable=False),
        sa.Column("lock_expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", postgresql.UUID(as_uuid=True), nullable=False),
    )

    op.create_table(
        "process_steps",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("process_step_type", sa.String(63), nullable=False),
        sa.Column("process_step_status", sa.String(63), nullable=False),
        sa.Column(
            "process_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("processes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("message", sa.Text(), nullable=True),
        _created_at("date_created"),
        sa.Column("date_last_changed", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_process_steps_process_created", "process_steps", ["process_id", "date_created"]
    )

    op.create_table(
        "dim_user_creation_data",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "service_account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("company_service_accounts.id"),
            nullable=False,
        ),
        sa.Column(
            "process_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("processes.id"),
            nullable=False,
        ),
    )

    # ── identity providers ────────────────────────────────────────────────
    op.create_table(
        "identity_providers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "company_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("companies.id"),
            nullable=False,
        ),
        sa.Column("category", sa.String(63), nullable=False),
        sa.Column("alias", sa.String(255), nullable=False, unique=True),
        _created_at(),
    )
    op.create_index("ix_identity_providers_company_id", "identity_providers", ["company_id"])

    # ── audit logs ────────────────────────────────────────────────────────
    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _created_at("timestamp"),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("actor_id", sa.String(255), nullable=True),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("target_type", sa.String(50), nullable=True),
        sa.Column("target_id", sa.String(255), nullable=True),
        sa.Column("request_id", sa.String(36), nullable=True),
        sa.Column(
            "details", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")
        ),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_company_id", "audit_logs", ["company_id"])
    op.create_index("ix_audit_logs_request_id", "audit_logs", ["request_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("identity_providers")
    op.drop_table("dim_user_creation_data")
    op.drop_table("process_steps")
    op.drop_table("processes")
    op.drop_table("company_service_accounts")
    op.drop_table("identity_assigned_roles")
    op.drop_table("user_roles")
    op.drop_table("company_users")
    op.drop_table("identities")
    op.drop_table("companies")
    op.execute(sa.schema.DropSequence(sa.Sequence("client_sequence")))
