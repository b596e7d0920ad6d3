"""Initial entitlement schema

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_ONLY = sa.text("status = 'active'")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Tenants: billing/ownership unit; status mirrors the tenant subscription
    op.create_table(
        "tenants",
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("billing_customer_ref", sa.String(255), nullable=True),
        sa.Column("billing_subscription_ref", sa.String(255), nullable=True, unique=True),
        sa.Column("plan", sa.String(20), nullable=False, server_default="basic"),
        sa.Column("seat_count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="inactive"),
        *_timestamps(),
        sa.CheckConstraint("seat_count >= 1", name="ck_tenants_seat_count_positive"),
    )
    op.create_index("idx_tenants_customer_ref", "tenants", ["billing_customer_ref"])

    op.create_table(
        "organizations",
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("domain", sa.String(255), nullable=True),
        sa.Column("sso_organization_ref", sa.String(255), nullable=True),
        sa.Column("max_seats", sa.Integer, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
    )
    op.create_index("ix_organizations_domain", "organizations", ["domain"])

    op.create_table(
        "users",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "tenant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tenants.tenant_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("credential_hash", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("sso_provider_ref", sa.String(255), nullable=True, unique=True),
        sa.Column(
            "registration_pending", sa.Boolean, nullable=False, server_default=sa.text("false")
        ),
        *_timestamps(),
    )
    op.create_index("idx_users_tenant", "users", ["tenant_id"])

    # Subscriptions: exactly one owner; at most one active per owner
    op.create_table(
        "subscriptions",
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_type", sa.String(20), nullable=False),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "tenant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tenants.tenant_id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "organization_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.organization_id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("billing_subscription_ref", sa.String(255), nullable=True, unique=True),
        sa.Column("billing_customer_ref", sa.String(255), nullable=True),
        sa.Column("plan", sa.String(20), nullable=False, server_default="basic"),
        sa.Column("price_per_seat", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("seats", sa.Integer, nullable=False, server_default="1"),
        sa.Column("billing_quantity", sa.Integer, nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="incomplete"),
        sa.Column("provider_status", sa.String(50), nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "billing_metadata",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint(
            "(CASE WHEN user_id IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN tenant_id IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN organization_id IS NOT NULL THEN 1 ELSE 0 END) = 1",
            name="ck_subscriptions_single_owner",
        ),
        sa.CheckConstraint("seats >= 1", name="ck_subscriptions_seats_positive"),
    )
    for owner in ("user", "tenant", "organization"):
        op.create_index(
            f"uq_subscriptions_active_{owner}",
            "subscriptions",
            [f"{owner}_id"],
            unique=True,
            postgresql_where=ACTIVE_ONLY,
        )
    op.create_index("idx_subscriptions_status", "subscriptions", ["status"])

    op.create_table(
        "seats",
        sa.Column("seat_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "subscription_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("subscriptions.subscription_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("assigned_email", sa.String(320), nullable=True),
        sa.Column("license_key", sa.String(64), nullable=False, unique=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="unused"),
        sa.Column("machine_identifier", sa.String(255), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_seats_subscription_status", "seats", ["subscription_id", "status"])
    op.create_index("idx_seats_assigned_email", "seats", ["assigned_email"])

    op.create_table(
        "team_members",
        sa.Column("member_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "subscription_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("subscriptions.subscription_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="invited"),
        sa.Column(
            "invited_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "subscription_id", "email", name="uq_team_members_subscription_email"
        ),
    )
    op.create_index("idx_team_members_email", "team_members", ["email"])


def downgrade() -> None:
    op.drop_table("team_members")
    op.drop_table("seats")
    op.drop_table("subscriptions")
    op.drop_table("users")
    op.drop_table("organizations")
    op.drop_table("tenants")
