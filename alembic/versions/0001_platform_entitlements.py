"""Platform entitlements: organizations, IAM, module catalog and entitlements.

Revision ID: 0001_platform_entitlements
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_platform_entitlements"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # --- IAM ---
    op.create_table(
        "auth_user",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("email", sa.String(length=256), nullable=False),
        sa.Column("full_name", sa.String(length=256), nullable=False, server_default=""),
        sa.Column("password_hash", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("default_org_id", sa.String(length=36), nullable=True),
    )
    op.create_index("ix_auth_user_email", "auth_user", ["email"], unique=True)

    op.create_table(
        "auth_refresh_token",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False, index=True),
        sa.Column("org_id", sa.String(length=36), nullable=True),
        sa.Column("token_hash", sa.String(length=128), nullable=False, unique=True, index=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_ip", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=256), nullable=True),
    )
    op.create_index("ix_refresh_token_user_revoked", "auth_refresh_token", ["user_id", "revoked_at"], unique=False)

    op.create_table(
        "auth_revoked_jti",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("jti", sa.String(length=64), nullable=False, unique=True, index=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.String(length=256), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    # --- Organizations ---
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
    )

    op.create_table(
        "organization_members",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("org_id", sa.String(length=36), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("auth_user.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("role", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("banned_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("org_id", "user_id", name="uq_org_member"),
    )
    op.create_index("ix_org_members_user_inserted", "organization_members", ["user_id", "inserted_at"], unique=False)

    op.create_table(
        "platform_admins",
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("auth_user.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("platform_role", sa.String(length=32), nullable=False, server_default="platform_owner"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.String(length=512), nullable=True),
        sa.CheckConstraint(
            "platform_role in ('platform_owner', 'platform_ops', 'platform_support')",
            name="ck_platform_admins_role",
        ),
    )

    # --- Module catalog & entitlements ---
    op.create_table(
        "module_catalog",
        sa.Column("module_key", sa.String(length=64), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("module_name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.String(length=512), nullable=True),
        sa.Column("dependency_keys", sa.JSON(), nullable=False),
        sa.Column("is_core", sa.Boolean(), nullable=False, server_default=sa.false(), index=True),
    )

    op.create_table(
        "organization_module_entitlements",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("org_id", sa.String(length=36), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("module_key", sa.String(length=64), sa.ForeignKey("module_catalog.module_key", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false(), index=True),
        sa.Column("billing_model", sa.String(length=32), nullable=False, server_default="manual"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active", index=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source", sa.String(length=64), nullable=False, server_default="admin"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("updated_by", sa.String(length=36), nullable=True),
        sa.UniqueConstraint("org_id", "module_key", name="uq_org_module_entitlement"),
        sa.CheckConstraint(
            "billing_model in ('manual', 'subscription', 'paid_in_full', 'trial', 'yearly_license')",
            name="ck_entitlement_billing_model",
        ),
        sa.CheckConstraint(
            "status in ('active', 'grace', 'past_due', 'canceled', 'inactive')",
            name="ck_entitlement_status",
        ),
    )

    op.create_table(
        "module_entitlement_audit",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("org_id", sa.String(length=36), nullable=False, index=True),
        sa.Column("module_key", sa.String(length=64), nullable=False, index=True),
        sa.Column("enabled_before", sa.Boolean(), nullable=True),
        sa.Column("enabled_after", sa.Boolean(), nullable=True),
        sa.Column("billing_model_before", sa.String(length=32), nullable=True),
        sa.Column("billing_model_after", sa.String(length=32), nullable=True),
        sa.Column("status_before", sa.String(length=32), nullable=True),
        sa.Column("status_after", sa.String(length=32), nullable=True),
        sa.Column("starts_at_before", sa.DateTime(timezone=True), nullable=True),
        sa.Column("starts_at_after", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ends_at_before", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ends_at_after", sa.DateTime(timezone=True), nullable=True),
        sa.Column("changed_by", sa.String(length=36), nullable=True),
        sa.Column("change_reason", sa.String(length=32), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
    )
    op.create_index("ix_module_entitlement_audit_created_at", "module_entitlement_audit", ["created_at"], unique=False)

    # --- Audit log ---
    op.create_table(
        "sys_audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("org_id", sa.String(length=36), nullable=True, index=True),
        sa.Column("actor", sa.String(length=128), nullable=False, index=True),
        sa.Column("action", sa.String(length=128), nullable=False, index=True),
        sa.Column("entity_type", sa.String(length=64), nullable=False, index=True),
        sa.Column("entity_id", sa.String(length=128), nullable=True, index=True),
        sa.Column("request_id", sa.String(length=64), nullable=True, index=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=256), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    op.create_index("ix_audit_org_time", "sys_audit_log", ["org_id", "created_at"], unique=False)


def downgrade():
    op.drop_index("ix_audit_org_time", table_name="sys_audit_log")
    op.drop_table("sys_audit_log")
    op.drop_index("ix_module_entitlement_audit_created_at", table_name="module_entitlement_audit")
    op.drop_table("module_entitlement_audit")
    op.drop_table("organization_module_entitlements")
    op.drop_table("module_catalog")
    op.drop_table("platform_admins")
    op.drop_index("ix_org_members_user_inserted", table_name="organization_members")
    op.drop_table("organization_members")
    op.drop_table("organizations")
    op.drop_table("auth_revoked_jti")
    op.drop_index("ix_refresh_token_user_revoked", table_name="auth_refresh_token")
    op.drop_table("auth_refresh_token")
    op.drop_index("ix_auth_user_email", table_name="auth_user")
    op.drop_table("auth_user")
